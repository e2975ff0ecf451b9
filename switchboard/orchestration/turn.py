"""Per-turn data passed between the orchestrator and handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from switchboard.orchestration.confirmations import Outcome
from switchboard.orchestration.routing import RoutingDecision
from switchboard.orchestration.safety import SENTRY_REPEAT_WINDOW
from switchboard.orchestration.schemas import (
    OrchestrationState,
    PendingConfirmation,
    Session,
    SignalBundle,
)
from switchboard.orchestration.signals import Thresholds


@dataclass
class TurnContext:
    """Everything a handler may read or mutate during one turn."""

    user_id: str
    scope: str
    message: str
    signals: SignalBundle
    state: OrchestrationState
    decision: RoutingDecision
    now: datetime
    thresholds: Thresholds = field(default_factory=Thresholds)
    sentry_repeat_window: timedelta = SENTRY_REPEAT_WINDOW
    confirmation: PendingConfirmation | None = None
    confirmation_outcome: Outcome | None = None
    resumed: Session | None = None


@dataclass
class HandlerResult:
    """What a handler decided. Text generation happens downstream from ``directive``."""

    directive: str
    data: dict[str, Any] = field(default_factory=dict)
    resumed: Session | None = None


class TurnHandler(Protocol):
    async def handle(self, ctx: TurnContext) -> HandlerResult: ...


@dataclass
class TurnOutcome:
    user_id: str
    scope: str
    aborted: bool = False
    target: str | None = None
    message: str = ""
    state: dict[str, Any] | None = None
    audit: dict[str, Any] | None = None
    resumed: str | None = None
    handler_result: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "scope": self.scope,
            "aborted": self.aborted,
            "target": self.target,
            "message": self.message,
            "state": self.state,
            "audit": self.audit,
            "resumed": self.resumed,
            "handler_result": self.handler_result,
        }
