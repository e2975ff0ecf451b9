"""Orchestration core: session stack, queue, deferred topics, pause/resume,
sweeping and routing for one user/scope at a time.
"""

from switchboard.orchestration.orchestrator import Orchestrator
from switchboard.orchestration.routing import (
    Effect,
    EffectType,
    RoutingDecision,
    RoutingReason,
    route,
)
from switchboard.orchestration.schemas import (
    ConfirmationType,
    DeferredKind,
    DeferredTopic,
    HandlerName,
    OrchestrationState,
    PausedMachineState,
    PauseReason,
    PendingConfirmation,
    QueuedIntent,
    Session,
    SessionKind,
    SessionStatus,
    SignalBundle,
)
from switchboard.orchestration.signals import Thresholds
from switchboard.orchestration.sweeper import SweepReport, sweep
from switchboard.orchestration.turn import HandlerResult, TurnContext, TurnHandler, TurnOutcome

__all__ = [
    "Orchestrator",
    # Routing
    "Effect",
    "EffectType",
    "RoutingDecision",
    "RoutingReason",
    "Thresholds",
    "route",
    # Sweeping
    "SweepReport",
    "sweep",
    # State
    "ConfirmationType",
    "DeferredKind",
    "DeferredTopic",
    "HandlerName",
    "OrchestrationState",
    "PausedMachineState",
    "PauseReason",
    "PendingConfirmation",
    "QueuedIntent",
    "Session",
    "SessionKind",
    "SessionStatus",
    "SignalBundle",
    # Turn
    "HandlerResult",
    "TurnContext",
    "TurnHandler",
    "TurnOutcome",
]
