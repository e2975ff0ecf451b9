"""Neutral companion handler: default owner of the turn.

Besides plain conversation it resurfaces queued intents and deferred
topics, asks to confirm newly detected profile facts, and runs light
topic sessions.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from switchboard.handlers.topics import advance_topic
from switchboard.orchestration import confirmations, deferred, lifecycle, queue, stack
from switchboard.orchestration.confirmations import Outcome
from switchboard.orchestration.kinds import ProfileConfirmMeta
from switchboard.orchestration.schemas import ConfirmationType, HandlerName, SessionKind
from switchboard.orchestration.turn import HandlerResult, TurnContext
from switchboard.utils import ensure_aware

logger = logging.getLogger(__name__)

RESURFACE_COOLDOWN = timedelta(minutes=10)


class CompanionHandler:
    async def handle(self, ctx: TurnContext) -> HandlerResult:
        if ctx.confirmation_outcome is Outcome.REASK:
            return HandlerResult("reask_confirmation", {"type": ctx.confirmation.type.value})

        session = stack.get_active(ctx.state)
        if session is not None and session.kind == SessionKind.TOPIC_LIGHT:
            return advance_topic(ctx, session)
        if session is not None and session.kind == SessionKind.PROFILE_CONFIRMATION:
            if ctx.state.pending_confirmation is None:
                # Question expired without an answer
                lifecycle.close_session(ctx.state, session.kind, outcome="abandoned", now=ctx.now)
            else:
                return HandlerResult("confirm_profile_fact", dict(ctx.state.pending_confirmation.payload))

        if ctx.confirmation_outcome is not None:
            return HandlerResult(
                f"confirmation_{ctx.confirmation_outcome.value}",
                {"type": ctx.confirmation.type.value},
            )

        return self._idle_turn(ctx)

    def _idle_turn(self, ctx: TurnContext) -> HandlerResult:
        state, now = ctx.state, ctx.now

        fact = ctx.signals.profile_fact
        if fact.key and fact.value and fact.confidence >= ctx.thresholds.intent:
            meta = ProfileConfirmMeta(fact_key=fact.key, fact_value=fact.value, remaining=1).snapshot()
            stack.upsert(
                state, SessionKind.PROFILE_CONFIRMATION, phase="awaiting_confirm", meta=meta, bump_turn=True, now=now
            )
            payload = {"key": fact.key, "value": fact.value}
            confirmations.open_confirmation(state, ConfirmationType.PROFILE_FACT, HandlerName.COMPANION, payload, now)
            return HandlerResult("confirm_profile_fact", payload)

        intent = queue.pop_next(state)
        if intent is not None:
            return HandlerResult(
                "resurface_intent",
                {"reason": intent.reason, "handler": intent.requested_handler.value, "excerpt": intent.message_excerpt},
            )

        last = state.deferred.last_processed_at
        cooled_down = last is None or now - ensure_aware(last) >= RESURFACE_COOLDOWN
        if state.pending_confirmation is None and cooled_down:
            topic = deferred.next_to_process(state, now)
            if topic is not None:
                lifecycle.offer_relaunch(state, topic, now)
                logger.info("Offering deferred %s topic", topic.kind.value)
                return HandlerResult("offer_deferred_topic", {"kind": topic.kind.value, "target": topic.target})

        return HandlerResult("chat")
