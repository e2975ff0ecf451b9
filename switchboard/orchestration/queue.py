"""Intent queue: small bounded FIFO of "switch to handler X later" requests."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from switchboard.orchestration.schemas import HandlerName, OrchestrationState, QueuedIntent
from switchboard.utils import ensure_aware, truncate, utcnow

logger = logging.getLogger(__name__)

QUEUE_LIMIT = 6
QUEUE_TTL = timedelta(hours=2)
REASON_MAX_CHARS = 160
EXCERPT_MAX_CHARS = 180


def enqueue(
    state: OrchestrationState,
    handler: HandlerName | str,
    reason: str,
    excerpt: str = "",
    now: datetime | None = None,
) -> bool:
    """Append an intent unless one with the same reason exists.

    Keeps only the most recent QUEUE_LIMIT entries. Returns True if added.
    """
    reason = truncate(reason, REASON_MAX_CHARS)
    if not reason:
        return False
    if any(q.reason == reason for q in state.queue):
        return False
    state.queue.append(
        QueuedIntent(
            requested_handler=HandlerName(handler),
            requested_at=now or utcnow(),
            reason=reason,
            message_excerpt=truncate(excerpt, EXCERPT_MAX_CHARS),
        )
    )
    if len(state.queue) > QUEUE_LIMIT:
        dropped = len(state.queue) - QUEUE_LIMIT
        state.queue = state.queue[-QUEUE_LIMIT:]
        logger.debug("Intent queue full, evicted %d oldest", dropped)
    return True


def prune_managed(
    state: OrchestrationState,
    family: str | Iterable[str],
    keep_reasons: Iterable[str] = (),
) -> int:
    """Drop entries of a managed reason family, except ``keep_reasons``.

    ``family`` is one or more reason prefixes owned by the caller. Entries
    outside the family are never touched. Returns the number removed.
    """
    prefixes = (family,) if isinstance(family, str) else tuple(family)
    keep = set(keep_reasons)
    before = len(state.queue)
    state.queue = [
        q for q in state.queue
        if not q.reason.startswith(prefixes) or q.reason in keep
    ]
    return before - len(state.queue)


def prune_expired(
    state: OrchestrationState,
    now: datetime | None = None,
    ttl: timedelta = QUEUE_TTL,
) -> list[QueuedIntent]:
    now = now or utcnow()
    expired = [q for q in state.queue if now - ensure_aware(q.requested_at) > ttl]
    if expired:
        gone = {q.id for q in expired}
        state.queue = [q for q in state.queue if q.id not in gone]
    return expired


def pop_next(state: OrchestrationState) -> QueuedIntent | None:
    """Remove and return the oldest queued intent."""
    if not state.queue:
        return None
    return state.queue.pop(0)


def has_reason(state: OrchestrationState, reason: str) -> bool:
    return any(q.reason == reason for q in state.queue)
