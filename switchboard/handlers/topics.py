"""Phase progression shared by the topic-discussion handlers."""

from __future__ import annotations

from switchboard.orchestration import lifecycle, stack
from switchboard.orchestration.kinds import spec_for
from switchboard.orchestration.schemas import Session
from switchboard.orchestration.turn import HandlerResult, TurnContext

TURNS_PER_PHASE = 2


def just_opened(ctx: TurnContext, session: Session) -> bool:
    return session.started_at == ctx.now


def advance_topic(ctx: TurnContext, session: Session) -> HandlerResult:
    """Move a topic session one step: opening -> exploring -> converging -> closing -> closed."""
    spec = spec_for(session.kind)
    data = {"kind": session.kind.value, "topic": session.topic}
    if just_opened(ctx, session):
        return HandlerResult("topic_opening", data)

    if session.phase == "closing":
        lifecycle.close_session(ctx.state, session.kind, outcome="completed", now=ctx.now)
        return HandlerResult("topic_closed", data)

    turns = session.turn_count + 1
    phase = spec.phases[min(turns // TURNS_PER_PHASE, len(spec.phases) - 1)]
    meta = {}
    if ctx.signals.topic_depth.plan_focus:
        meta["plan_focus"] = True
    updated = stack.upsert(ctx.state, session.kind, phase=phase, meta=meta, bump_turn=True, now=ctx.now)
    return HandlerResult(f"topic_{updated.phase}", data)
