"""Staleness sweeper: per-kind TTL pruning, run once per turn before routing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from switchboard.orchestration import confirmations, deferred, pause, queue, stack
from switchboard.orchestration.kinds import is_safety, spec_for, ttl_for
from switchboard.orchestration.schemas import OrchestrationState, Session
from switchboard.utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

PAUSED_SLOT_TTL = timedelta(hours=4)


@dataclass
class SweepReport:
    """What one sweep removed."""

    sessions: list[str] = field(default_factory=list)
    queue: int = 0
    deferred: int = 0
    confirmation: str | None = None
    paused: str | None = None
    paused_to_deferred: bool = False
    resumed: str | None = None
    resumed_session: Session | None = field(default=None, repr=False)
    deferred_pause_cleared: bool = False

    @property
    def empty(self) -> bool:
        return not (
            self.sessions
            or self.queue
            or self.deferred
            or self.confirmation
            or self.paused
            or self.resumed
            or self.deferred_pause_cleared
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "sessions": list(self.sessions),
            "queue": self.queue,
            "deferred": self.deferred,
            "confirmation": self.confirmation,
            "paused": self.paused,
            "paused_to_deferred": self.paused_to_deferred,
            "resumed": self.resumed,
            "deferred_pause_cleared": self.deferred_pause_cleared,
        }


def sweep(
    state: OrchestrationState,
    now: datetime | None = None,
    *,
    ttl_overrides: dict[str, int] | None = None,
    paused_ttl: timedelta = PAUSED_SLOT_TTL,
    confirmation_ttl: timedelta = confirmations.CONFIRMATION_TTL,
    confirmation_turns: int = confirmations.CONFIRMATION_TURNS,
) -> SweepReport:
    """Remove everything older than its TTL. Never raises."""
    now = now or utcnow()
    report = SweepReport()
    had_safety = stack.active_safety(state) is not None

    # Sessions
    for session in list(state.stack):
        age = now - ensure_aware(session.last_active_at)
        if is_safety(session.kind) and session.phase == "resolved":
            stack.close(state, session.kind, outcome="resolved", now=now)
            report.sessions.append(session.kind.value)
        elif age > ttl_for(session.kind, ttl_overrides):
            stack.close(state, session.kind, outcome="stale", now=now)
            key = spec_for(session.kind).denormalized_key
            if key:
                state.pop_extra(key)
            report.sessions.append(session.kind.value)
            logger.info("Swept stale %s session (idle %s)", session.kind.value, age)

    report.queue = len(queue.prune_expired(state, now))
    report.deferred = len(deferred.prune_expired(state, now))

    pending = state.pending_confirmation
    if pending is not None and confirmations.is_expired(
        pending, state.turn_index, now, ttl=confirmation_ttl, max_turns=confirmation_turns
    ):
        state.pending_confirmation = None
        report.confirmation = pending.type.value
        logger.info("Swept expired %s confirmation", pending.type.value)

    slot = state.paused
    if slot is not None:
        if now - ensure_aware(slot.paused_at) > paused_ttl:
            deferred_kind = spec_for(slot.kind).deferred_kind
            if deferred_kind is not None:
                deferred.defer(state, deferred_kind, slot.label, slot.resume_context or slot.label, now=now)
                report.paused_to_deferred = True
            pause.discard(state)
            report.paused = slot.kind.value
            logger.info("Paused %s outlived its slot TTL", slot.kind.value)
        elif had_safety and stack.active_safety(state) is None:
            # Safety lapsed unresolved: resume the paused session once.
            resumed = pause.resume(state, now)
            if resumed is not None:
                report.resumed = resumed.kind.value
                report.resumed_session = resumed

    until = state.deferred.paused_until
    if until is not None and ensure_aware(until) <= now:
        deferred.clear_pause(state)
        report.deferred_pause_cleared = True

    if not report.empty:
        logger.debug("Sweep removed: %s", report.as_dict())
    return report
