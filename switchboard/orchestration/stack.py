"""Session stack: one session per kind, top of stack owns the turn.

All operations take the state object explicitly and mutate it in place.
Missing targets are no-ops; nothing here raises for bad state.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from switchboard.orchestration.kinds import is_safety, spec_for
from switchboard.orchestration.schemas import (
    OrchestrationState,
    Session,
    SessionKind,
    SessionStatus,
)
from switchboard.utils import utcnow

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def touch(state: OrchestrationState, now: datetime | None = None) -> None:
    """Stamp the stack recency markers used by the save-time merge."""
    now = now or utcnow()
    state.updated_at = now
    state.stack_updated_at = now


def get_active(state: OrchestrationState) -> Session | None:
    """Top of stack, or None."""
    return state.stack[-1] if state.stack else None


def get_active_of_kind(state: OrchestrationState, kind: SessionKind | str) -> Session | None:
    """The top session, only if it is of ``kind``."""
    top = get_active(state)
    if top is not None and top.kind == SessionKind(kind):
        return top
    return None


def get_session(state: OrchestrationState, kind: SessionKind | str) -> Session | None:
    """Session of ``kind`` anywhere in the stack."""
    kind = SessionKind(kind)
    for s in state.stack:
        if s.kind == kind:
            return s
    return None


def active_safety(state: OrchestrationState) -> Session | None:
    top = get_active(state)
    if top is not None and is_safety(top.kind):
        return top
    return None


def active_non_safety(state: OrchestrationState) -> Session | None:
    top = get_active(state)
    if top is not None and not is_safety(top.kind):
        return top
    return None


def list_kinds(state: OrchestrationState) -> list[SessionKind]:
    return [s.kind for s in state.stack]


def upsert(
    state: OrchestrationState,
    kind: SessionKind | str,
    *,
    phase: str | None = None,
    meta: dict[str, Any] | None = None,
    topic: str | None = _UNSET,
    resume_brief: str | None = _UNSET,
    bump_turn: bool = False,
    now: datetime | None = None,
) -> Session:
    """Replace the session of ``kind`` and push it to the top.

    Identity fields (id, started_at) and any field not supplied are
    preserved from the existing session. ``meta`` is merged key by key.
    Sessions left below the new top are marked paused.
    """
    kind = SessionKind(kind)
    spec = spec_for(kind)
    now = now or utcnow()
    existing = get_session(state, kind)

    if existing is not None:
        fields = existing.model_dump()
        fields["meta"] = {**existing.meta, **(meta or {})}
        if phase is not None:
            fields["phase"] = spec.normalize_phase(phase)
        else:
            fields["phase"] = spec.normalize_phase(existing.phase)
        if bump_turn:
            fields["turn_count"] = existing.turn_count + 1
    else:
        fields = {
            "kind": kind,
            "owner": spec.owner,
            "started_at": now,
            "phase": spec.normalize_phase(phase),
            "meta": dict(meta or {}),
            "turn_count": 1 if bump_turn else 0,
        }
        logger.info("Opening %s session (phase=%s)", kind.value, fields["phase"])

    if topic is not _UNSET:
        fields["topic"] = topic
    if resume_brief is not _UNSET:
        fields["resume_brief"] = resume_brief
    fields["status"] = SessionStatus.ACTIVE
    fields["last_active_at"] = now

    session = Session.model_validate(fields)
    state.stack = [s for s in state.stack if s.kind != kind]
    for below in state.stack:
        below.status = SessionStatus.PAUSED
    state.stack.append(session)
    touch(state, now)
    return session


def close(
    state: OrchestrationState,
    kind: SessionKind | str,
    outcome: str = "completed",
    now: datetime | None = None,
) -> Session | None:
    """Remove the session of ``kind``. Returns it, or None if absent."""
    target = get_session(state, kind)
    if target is None:
        return None
    state.stack = [s for s in state.stack if s.kind != target.kind]
    top = get_active(state)
    if top is not None:
        top.status = SessionStatus.ACTIVE
    touch(state, now)
    logger.info("Closed %s session (%s) after %d turns", target.kind.value, outcome, target.turn_count)
    return target
