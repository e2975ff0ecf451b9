"""Shared session-lifecycle operations.

Applies the effects planned by the routing policy, resolves answered
confirmations, and closes sessions with deferred-topic chaining: when a
session completes and a topic of the same kind is waiting, the user is
asked whether to pick it up next.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from switchboard.events import SESSION_PAUSED
from switchboard.orchestration import confirmations, deferred, pause, queue, safety, stack
from switchboard.orchestration.confirmations import Outcome
from switchboard.orchestration.kinds import SafetyMeta, owner_for, session_kind_for, spec_for
from switchboard.orchestration.routing import EffectType
from switchboard.orchestration.schemas import (
    ConfirmationType,
    DeferredTopic,
    HandlerName,
    OrchestrationState,
    PauseReason,
    PendingConfirmation,
    Session,
    SessionKind,
)
from switchboard.orchestration.turn import TurnContext
from switchboard.utils import utcnow

logger = logging.getLogger(__name__)

DUAL_TOOL_REASON_PREFIX = "dual_tool:"


# ---------------------------------------------------------------------------
# Open / close
# ---------------------------------------------------------------------------


def open_session(
    state: OrchestrationState,
    kind: SessionKind | str,
    target: str | None = None,
    meta: dict[str, Any] | None = None,
    resume_brief: str | None = None,
    now: datetime | None = None,
) -> Session:
    """Open (or refresh) a session; consumes a matching deferred topic."""
    kind = SessionKind(kind)
    spec = spec_for(kind)
    if spec.deferred_kind is not None:
        match = deferred.find_match(state, spec.deferred_kind, target, now)
        if match is not None:
            deferred.remove(state, match.id)
            if resume_brief is None and match.summaries:
                resume_brief = match.summaries[-1].summary
    kwargs: dict[str, Any] = {"meta": meta or {}, "now": now, "bump_turn": True}
    if target:
        kwargs["topic"] = target
    if resume_brief:
        kwargs["resume_brief"] = resume_brief
    return stack.upsert(state, kind, **kwargs)


def open_from_deferred(state: OrchestrationState, topic: DeferredTopic, now: datetime | None = None) -> Session:
    kind = session_kind_for(topic.kind)
    family = spec_for(kind).family
    meta: dict[str, Any] = {}
    if topic.target:
        meta = {"topic": topic.target} if family == "topic" else {"action_target": topic.target}
    brief = topic.summaries[-1].summary if topic.summaries else None
    deferred.remove(state, topic.id)
    return stack.upsert(
        state, kind, meta=meta, topic=topic.target, resume_brief=brief, bump_turn=True, now=now
    )


def offer_relaunch(
    state: OrchestrationState,
    topic: DeferredTopic,
    now: datetime | None = None,
) -> PendingConfirmation:
    """Ask whether to pick up a deferred topic now."""
    pending = confirmations.open_confirmation(
        state,
        ConfirmationType.RELAUNCH_CONSENT,
        owner_for(session_kind_for(topic.kind)),
        payload={"topic_id": topic.id, "kind": topic.kind.value, "target": topic.target},
        now=now,
    )
    deferred.mark_processed(state, now)
    return pending


def chain_next(
    state: OrchestrationState,
    kind: SessionKind,
    now: datetime | None = None,
) -> PendingConfirmation | None:
    deferred_kind = spec_for(kind).deferred_kind
    if deferred_kind is None or state.pending_confirmation is not None:
        return None
    if deferred.is_paused(state, now):
        return None
    topic = deferred.find_next_of_kind(state, deferred_kind, now)
    if topic is None:
        return None
    logger.info("Chaining to deferred %s topic %s", topic.kind.value, topic.id)
    return offer_relaunch(state, topic, now)


def close_session(
    state: OrchestrationState,
    kind: SessionKind | str,
    outcome: str = "completed",
    now: datetime | None = None,
) -> Session | None:
    """Close a session, clear its denormalized state, and chain on success."""
    closed = stack.close(state, kind, outcome=outcome, now=now)
    if closed is None:
        return None
    spec = spec_for(closed.kind)
    if spec.denormalized_key:
        state.pop_extra(spec.denormalized_key)
    if outcome == "completed":
        chain_next(state, closed.kind, now)
    return closed


def defer_session(state: OrchestrationState, session: Session, now: datetime | None = None) -> None:
    """Move a session into the deferred registry (used when the paused slot is taken)."""
    deferred_kind = spec_for(session.kind).deferred_kind
    if deferred_kind is not None:
        label = session.topic or session.meta.get("action_target")
        deferred.defer(state, deferred_kind, label, session.resume_brief or label or "", now=now)
    close_session(state, session.kind, outcome="deferred", now=now)


def open_safety(
    state: OrchestrationState,
    kind: SessionKind,
    tier: PauseReason,
    immediacy: str = "unknown",
    now: datetime | None = None,
) -> Session:
    meta = SafetyMeta(tier=tier.value, immediacy=immediacy).snapshot()
    session = stack.upsert(state, kind, phase="acute", meta=meta, bump_turn=True, now=now)
    safety.record_escalation(state, tier, now)
    logger.warning("Safety escalation: %s (%s)", tier.value, immediacy)
    return session


def escalate_to_sentry(
    state: OrchestrationState,
    now: datetime | None = None,
    window: timedelta = safety.SENTRY_REPEAT_WINDOW,
) -> Session | None:
    """Swap the active firefighter session for a sentry one.

    Inside the anti-repetition window the firefighter session is kept and
    sent back to acute instead; returns None in that case.
    """
    now = now or utcnow()
    current = stack.active_safety(state)
    if safety.effective_tier(PauseReason.SENTRY, state, now, window) is not PauseReason.SENTRY:
        if current is not None:
            stack.upsert(state, current.kind, phase="acute", bump_turn=True, now=now)
        logger.info("Sentry escalation suppressed, already escalated within %s", window)
        return None
    if current is not None:
        stack.close(state, current.kind, outcome="escalated", now=now)
    return open_safety(state, SessionKind.SAFETY_SENTRY, PauseReason.SENTRY, "acute", now)


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


def apply_effects(ctx: TurnContext) -> list[str]:
    """Apply the routing decision's effects to ``ctx.state``.

    Returns the event types worth emitting (e.g. session_paused).
    """
    state, now = ctx.state, ctx.now
    events: list[str] = []

    for effect in ctx.decision.effects:
        data = effect.data
        if effect.type is EffectType.PAUSE_ACTIVE:
            session = stack.get_session(state, effect.kind)
            if session is not None:
                brief = session.resume_brief or session.topic or ""
                if pause.pause(state, session, data["reason"], resume_context=brief, now=now) is not None:
                    events.append(SESSION_PAUSED)
                else:
                    defer_session(state, session, now)

        elif effect.type is EffectType.DEFER_ACTIVE:
            session = stack.get_session(state, effect.kind)
            if session is not None:
                defer_session(state, session, now)

        elif effect.type is EffectType.OPEN_SAFETY:
            open_safety(state, SessionKind(effect.kind), PauseReason(data["tier"]), data.get("immediacy", "unknown"), now)

        elif effect.type is EffectType.ESCALATE_SAFETY:
            escalate_to_sentry(state, now, ctx.sentry_repeat_window)

        elif effect.type is EffectType.RESOLVE_CONFIRMATION:
            pending, outcome = confirmations.resolve(
                state, ctx.signals.pending_resolution, ctx.thresholds.pending_resolution
            )
            ctx.confirmation, ctx.confirmation_outcome = pending, outcome
            if pending is not None and outcome is not None:
                apply_confirmation(ctx, pending, outcome)

        elif effect.type is EffectType.CLOSE_ACTIVE:
            close_session(state, effect.kind, outcome=data.get("outcome", "abandoned"), now=now)

        elif effect.type is EffectType.OPEN_SESSION:
            open_session(state, effect.kind, target=data.get("target"), meta=data.get("meta"), now=now)

        elif effect.type is EffectType.DEFER_TOPIC:
            if effect.kind:
                deferred.defer(state, effect.kind, data.get("target"), data.get("summary", ""), now=now)

        elif effect.type is EffectType.ENQUEUE_INTENT:
            queue.enqueue(state, data["handler"], data["reason"], data.get("excerpt", ""), now=now)

        elif effect.type is EffectType.ASK_DUAL_INTENT:
            confirmations.open_confirmation(
                state, ConfirmationType.DUAL_INTENT, HandlerName.ARCHITECT, payload=data, now=now
            )
            second = data["second"]
            queue.enqueue(
                state,
                HandlerName.ARCHITECT,
                f"{DUAL_TOOL_REASON_PREFIX}{second['signal']}",
                ctx.message,
                now=now,
            )

        elif effect.type is EffectType.CONTINUE_SESSION:
            pass

    return events


# ---------------------------------------------------------------------------
# Confirmation outcomes
# ---------------------------------------------------------------------------


def _open_candidate(ctx: TurnContext, data: dict[str, Any]) -> Session:
    return open_session(ctx.state, data["kind"], target=data.get("target"), meta=data.get("meta"), now=ctx.now)


def _defer_candidate(ctx: TurnContext, data: dict[str, Any]) -> None:
    deferred_kind = spec_for(data["kind"]).deferred_kind
    if deferred_kind is not None:
        deferred.defer(ctx.state, deferred_kind, data.get("target"), ctx.message, now=ctx.now)


def apply_confirmation(ctx: TurnContext, pending: PendingConfirmation, outcome: Outcome) -> None:
    state, now, payload = ctx.state, ctx.now, pending.payload

    if pending.type is ConfirmationType.DUAL_INTENT:
        if outcome is Outcome.REASK:
            return
        queue.prune_managed(state, DUAL_TOOL_REASON_PREFIX)
        first, second = payload.get("first"), payload.get("second")
        if not first or not second:
            return
        if outcome is Outcome.CONFIRM_BOTH:
            _open_candidate(ctx, first)
            _defer_candidate(ctx, second)
        elif outcome is Outcome.CONFIRM_REVERSED:
            _open_candidate(ctx, second)
            _defer_candidate(ctx, first)
        elif outcome is Outcome.ONLY_FIRST:
            _open_candidate(ctx, first)
        elif outcome is Outcome.ONLY_SECOND:
            _open_candidate(ctx, second)

    elif pending.type is ConfirmationType.RELAUNCH_CONSENT:
        topic = deferred.get(state, payload.get("topic_id", ""))
        if outcome is Outcome.ACCEPTED and topic is not None:
            open_from_deferred(state, topic, now)
        elif outcome is Outcome.DECLINED:
            if topic is not None:
                deferred.remove(state, topic.id)
            deferred.pause_all(state, now=now)

    elif pending.type is ConfirmationType.PROFILE_FACT:
        if outcome is Outcome.REASK:
            return
        if outcome is Outcome.ACCEPTED and payload.get("key"):
            facts = dict(state.get_extra("profile_facts") or {})
            facts[payload["key"]] = payload.get("value")
            state.set_extra("profile_facts", facts)
        close_session(state, SessionKind.PROFILE_CONFIRMATION, outcome="completed", now=now)


def reset_state(state: OrchestrationState, now: datetime | None = None) -> OrchestrationState:
    """Clear every orchestration structure, keeping unknown keys."""
    extra = dict(state.model_extra or {})
    for spec_key in {s.denormalized_key for s in map(spec_for, SessionKind) if s.denormalized_key}:
        extra.pop(spec_key, None)
    fresh = OrchestrationState.model_validate(extra)
    stack.touch(fresh, now or utcnow())
    logger.info("Orchestration state reset")
    return fresh
