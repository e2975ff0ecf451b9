"""Architect handler: tool flows, serious topics and deep-reasons exploration."""

from __future__ import annotations

import logging
from typing import Any

from switchboard.handlers.topics import advance_topic, just_opened
from switchboard.orchestration import lifecycle, stack
from switchboard.orchestration.confirmations import Outcome
from switchboard.orchestration.kinds import DEEP_REASONS_STATE_KEY, spec_for
from switchboard.orchestration.routing import EffectType
from switchboard.orchestration.schemas import HandlerName, Session
from switchboard.orchestration.turn import HandlerResult, TurnContext

logger = logging.getLogger(__name__)


class ArchitectHandler:
    async def handle(self, ctx: TurnContext) -> HandlerResult:
        asks = ctx.decision.effects_of(EffectType.ASK_DUAL_INTENT)
        if asks:
            data = asks[0].data
            return HandlerResult(
                "ask_dual_intent",
                {"first": data["first"]["signal"], "second": data["second"]["signal"]},
            )
        if ctx.confirmation_outcome is Outcome.REASK:
            return HandlerResult("reask_confirmation", {"type": ctx.confirmation.type.value})

        session = stack.get_active(ctx.state)
        if session is None or session.owner != HandlerName.ARCHITECT:
            if ctx.confirmation_outcome is not None:
                return HandlerResult(
                    f"confirmation_{ctx.confirmation_outcome.value}",
                    {"type": ctx.confirmation.type.value},
                )
            return HandlerResult("acknowledge")

        family = spec_for(session.kind).family
        if family == "tool":
            return self._tool_turn(ctx, session)
        if family == "deep":
            return self._deep_turn(ctx, session)
        return advance_topic(ctx, session)

    # ------------------------------------------------------------------
    # Tool flows
    # ------------------------------------------------------------------

    def _tool_turn(self, ctx: TurnContext, session: Session) -> HandlerResult:
        spec = spec_for(session.kind)
        block = ctx.signals.tool_signal(spec.deferred_kind) if spec.deferred_kind else None
        response = block.user_response if block else "none"
        target = (block.target_hint if block else None) or session.meta.get("action_target")
        data: dict[str, Any] = {"kind": session.kind.value, "target": target}

        if just_opened(ctx, session):
            return HandlerResult(f"tool_{session.phase}", data)

        idx = spec.phases.index(spec.normalize_phase(session.phase))
        if response == "no":
            lifecycle.close_session(ctx.state, session.kind, outcome="declined", now=ctx.now)
            return HandlerResult("tool_cancelled", data)
        if response == "yes":
            if idx == len(spec.phases) - 1:
                lifecycle.close_session(ctx.state, session.kind, outcome="completed", now=ctx.now)
                return HandlerResult("tool_completed", data)
            phase = spec.phases[idx + 1]
        elif response == "modify":
            phase = spec.default_phase
        elif idx == 0 and target:
            phase = spec.phases[1]
        else:
            phase = session.phase

        meta = {"action_target": target} if target else {}
        if block and block.user_response != "none":
            meta["status_hint"] = block.user_response
        updated = stack.upsert(ctx.state, session.kind, phase=phase, meta=meta, bump_turn=True, now=ctx.now)
        return HandlerResult(f"tool_{updated.phase}", data)

    # ------------------------------------------------------------------
    # Deep reasons
    # ------------------------------------------------------------------

    def _deep_turn(self, ctx: TurnContext, session: Session) -> HandlerResult:
        """Deep reasons keeps its full working state under its own blob key."""
        spec = spec_for(session.kind)
        state = ctx.state
        deep = dict(state.get_extra(DEEP_REASONS_STATE_KEY) or {})
        deep.setdefault("action_target", session.meta.get("action_target"))
        signal = ctx.signals.deep_reasons
        if signal.action_target:
            deep["action_target"] = signal.action_target
        data = {"kind": session.kind.value, "target": deep.get("action_target")}

        if just_opened(ctx, session):
            deep.update({"phase": session.phase, "turns": 1})
            state.set_extra(DEEP_REASONS_STATE_KEY, deep)
            return HandlerResult(f"deep_{session.phase}", data)

        if session.phase == "closing":
            lifecycle.close_session(state, session.kind, outcome="completed", now=ctx.now)
            return HandlerResult("deep_closed", data)

        idx = spec.phases.index(spec.normalize_phase(session.phase))
        phase = spec.phases[min(idx + 1, len(spec.phases) - 1)]
        deep["phase"] = phase
        deep["turns"] = int(deep.get("turns") or 0) + 1
        state.set_extra(DEEP_REASONS_STATE_KEY, deep)

        meta = {"action_target": deep["action_target"]} if deep.get("action_target") else {}
        stack.upsert(state, session.kind, phase=phase, meta=meta, bump_turn=True, now=ctx.now)
        return HandlerResult(f"deep_{phase}", data)
