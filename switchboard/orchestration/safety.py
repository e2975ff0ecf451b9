"""Safety resolution state machine and escalation bookkeeping.

Firefighter: acute -> stabilizing -> confirming -> resolved.
Sentry:      acute -> confirming -> resolved.
Symptoms still present send either machine back to acute; a firefighter
session can escalate to sentry at any point.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from switchboard.orchestration.schemas import (
    OrchestrationState,
    PauseReason,
    SafetyResolutionSignal,
    SessionKind,
)
from switchboard.utils import ensure_aware, utcnow

SENTRY_REPEAT_WINDOW = timedelta(minutes=10)

TIER_KIND = {
    PauseReason.SENTRY: SessionKind.SAFETY_SENTRY,
    PauseReason.FIREFIGHTER: SessionKind.SAFETY_FIREFIGHTER,
}


@dataclass
class SafetyStep:
    phase: str
    resolved: bool = False
    escalate: bool = False


def advance(
    kind: SessionKind,
    phase: str,
    signal: SafetyResolutionSignal,
    threshold: float = 0.6,
) -> SafetyStep:
    """Next phase of a safety session given this turn's resolution signal."""
    if signal.confidence < threshold:
        return SafetyStep(phase=phase)

    if kind == SessionKind.SAFETY_FIREFIGHTER and signal.escalate_to_sentry:
        return SafetyStep(phase="acute", escalate=True)
    if signal.symptoms_still_present:
        return SafetyStep(phase="acute")

    if kind == SessionKind.SAFETY_FIREFIGHTER:
        if phase == "acute" and (signal.user_stabilizing or signal.user_confirms_safe):
            return SafetyStep(phase="stabilizing")
        if phase == "stabilizing" and (signal.user_stabilizing or signal.user_confirms_safe):
            return SafetyStep(phase="confirming")
        if phase == "confirming" and signal.user_confirms_safe:
            return SafetyStep(phase="resolved", resolved=True)
        return SafetyStep(phase=phase)

    if phase == "acute" and (signal.external_help_mentioned or signal.user_confirms_safe):
        return SafetyStep(phase="confirming")
    if phase == "confirming" and signal.user_confirms_safe:
        return SafetyStep(phase="resolved", resolved=True)
    return SafetyStep(phase=phase)


def effective_tier(
    level: str,
    state: OrchestrationState,
    now: datetime | None = None,
    window: timedelta = SENTRY_REPEAT_WINDOW,
) -> PauseReason:
    """Downgrade a repeated sentry escalation inside ``window`` to firefighter."""
    tier = PauseReason(level)
    if tier is PauseReason.SENTRY and state.safety.last_sentry_at is not None:
        now = now or utcnow()
        if now - ensure_aware(state.safety.last_sentry_at) < window:
            return PauseReason.FIREFIGHTER
    return tier


def record_escalation(state: OrchestrationState, tier: PauseReason, now: datetime | None = None) -> None:
    now = now or utcnow()
    if tier is PauseReason.SENTRY:
        state.safety.last_sentry_at = now
    else:
        state.safety.last_firefighter_at = now
