"""Safety handlers: firefighter and sentry.

Drive the safety resolution state machine. When a safety session
resolves it is closed and the session it interrupted is resumed.
"""

from __future__ import annotations

import logging

from switchboard.orchestration import lifecycle, pause, safety, stack
from switchboard.orchestration.routing import RoutingReason
from switchboard.orchestration.schemas import PauseReason
from switchboard.orchestration.turn import HandlerResult, TurnContext

logger = logging.getLogger(__name__)


class SafetyHandler:
    def __init__(self, tier: PauseReason) -> None:
        self.tier = tier

    async def handle(self, ctx: TurnContext) -> HandlerResult:
        state, now = ctx.state, ctx.now
        session = stack.active_safety(state)
        if session is None:
            return HandlerResult("safety_check_in", {"tier": self.tier.value})

        data = {"kind": session.kind.value, "tier": session.meta.get("tier", self.tier.value)}
        if ctx.decision.reason is RoutingReason.SAFETY_ESCALATION:
            return HandlerResult(f"safety_{session.phase}", {**data, "immediacy": session.meta.get("immediacy")})

        step = safety.advance(
            session.kind,
            session.phase,
            ctx.signals.safety_resolution,
            ctx.thresholds.safety_resolution,
        )

        if step.escalate:
            if lifecycle.escalate_to_sentry(state, now, ctx.sentry_repeat_window) is None:
                return HandlerResult("safety_acute", {**data, "escalation_suppressed": True})
            return HandlerResult("safety_escalated", {**data, "tier": PauseReason.SENTRY.value})

        if step.resolved:
            lifecycle.close_session(state, session.kind, outcome="resolved", now=now)
            resumed = pause.resume(state, now)
            if resumed is not None:
                data.update({"resumed_kind": resumed.kind.value, "resume_brief": resumed.resume_brief})
            logger.info("Safety %s resolved", session.kind.value)
            return HandlerResult("safety_resolved", data, resumed=resumed)

        meta = {}
        if step.phase == "stabilizing":
            meta["stabilizing_turns"] = int(session.meta.get("stabilizing_turns", 0)) + 1
        updated = stack.upsert(state, session.kind, phase=step.phase, meta=meta, bump_turn=True, now=now)
        return HandlerResult(f"safety_{updated.phase}", data)
