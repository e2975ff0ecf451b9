"""Single-slot pause/resume store for safety interrupts.

pause() evicts a session through the normal close path and captures a
snapshot from its typed meta (or from the denormalized blob key for
kinds that keep their state outside the session). resume() rebuilds the
session; an unknown phase falls back to the kind's default and a missing
snapshot still yields a session seeded from the label.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from switchboard.orchestration import stack
from switchboard.orchestration.kinds import KindSpec, spec_for
from switchboard.orchestration.schemas import (
    OrchestrationState,
    PausedMachineState,
    PauseReason,
    Session,
)
from switchboard.utils import truncate, utcnow

logger = logging.getLogger(__name__)

RESUME_CONTEXT_MAX_CHARS = 200


def has_paused(state: OrchestrationState) -> bool:
    return state.paused is not None


def _label(session: Session) -> str:
    if session.topic:
        return session.topic
    for key in ("action_target", "topic"):
        value = session.meta.get(key)
        if isinstance(value, str) and value:
            return value
    return session.kind.value.replace("_", " ")


def _capture(state: OrchestrationState, session: Session, spec: KindSpec) -> dict[str, Any] | None:
    if spec.denormalized_key:
        raw = state.get_extra(spec.denormalized_key)
        return dict(raw) if isinstance(raw, dict) else None
    return spec.parse_meta(session.meta).snapshot()


def pause(
    state: OrchestrationState,
    session: Session,
    reason: PauseReason | str,
    resume_context: str = "",
    now: datetime | None = None,
) -> PausedMachineState | None:
    """Evict ``session`` into the paused slot.

    Returns None (and leaves state untouched) when the slot is occupied.
    """
    if state.paused is not None:
        logger.warning(
            "Paused slot already holds %s, not pausing %s",
            state.paused.kind.value,
            session.kind.value,
        )
        return None

    now = now or utcnow()
    spec = spec_for(session.kind)
    snapshot = _capture(state, session, spec)

    stack.close(state, session.kind, outcome="paused", now=now)
    if spec.denormalized_key:
        state.pop_extra(spec.denormalized_key)

    slot = PausedMachineState(
        kind=session.kind,
        session_id=session.id,
        label=_label(session),
        snapshot=snapshot,
        phase=session.phase,
        turn_count=session.turn_count,
        paused_at=now,
        reason=PauseReason(reason),
        resume_context=truncate(resume_context or session.resume_brief or "", RESUME_CONTEXT_MAX_CHARS),
    )
    state.paused = slot
    logger.info("Paused %s session for %s interrupt", session.kind.value, slot.reason.value)
    return slot


def resume(state: OrchestrationState, now: datetime | None = None) -> Session | None:
    """Rebuild the paused session on top of the stack and clear the slot."""
    slot = state.paused
    if slot is None:
        return None

    spec = spec_for(slot.kind)
    phase = spec.normalize_phase(slot.phase)
    restored = spec.parse_meta(slot.snapshot)

    if spec.denormalized_key:
        if slot.snapshot:
            state.set_extra(spec.denormalized_key, dict(slot.snapshot))
        meta = restored.model_dump(mode="json", include=set(spec.meta_model.model_fields), exclude_none=True)
    else:
        meta = restored.snapshot()

    if slot.snapshot is None:
        logger.warning("Paused %s has no snapshot, resuming from label only", slot.kind.value)

    session = stack.upsert(
        state,
        slot.kind,
        phase=phase,
        meta=meta,
        topic=slot.label or None,
        resume_brief=slot.resume_context or None,
        now=now,
    )
    session.id = slot.session_id
    session.turn_count = slot.turn_count
    state.paused = None
    logger.info("Resumed %s session in phase %s", slot.kind.value, phase)
    return session


def discard(state: OrchestrationState) -> PausedMachineState | None:
    """Clear the slot without restoring anything."""
    slot = state.paused
    state.paused = None
    if slot is not None:
        logger.info("Discarded paused %s session", slot.kind.value)
    return slot
