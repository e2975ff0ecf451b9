"""Deferred topic registry: postponed topics with dedup and enrichment.

Topics of the same kind whose normalized labels are equal, or where one
contains the other, are the same topic: a repeat mention enriches the
existing entry instead of creating a second one. The registry is bounded
per kind and globally; the oldest entry is evicted first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from switchboard.orchestration.kinds import DEFERRED_PRIORITY, TOOL_DEFERRED_KINDS
from switchboard.orchestration.schemas import (
    DeferredKind,
    DeferredTopic,
    OrchestrationState,
    TopicSummary,
)
from switchboard.utils import ensure_aware, labels_match, truncate, utcnow

logger = logging.getLogger(__name__)

MAX_TOPICS = 5
MAX_SUMMARIES = 3
SUMMARY_MAX_CHARS = 100
TARGET_MAX_CHARS = 80
TOPIC_TTL = timedelta(hours=48)
DECLINE_PAUSE = timedelta(hours=2)

PER_KIND_CAP: dict[DeferredKind, int] = {
    **{k: 2 for k in TOOL_DEFERRED_KINDS},
    DeferredKind.TOPIC_LIGHT: 3,
    DeferredKind.TOPIC_SERIOUS: 3,
    DeferredKind.DEEP_REASONS: 4,
}


def _is_expired(topic: DeferredTopic, now: datetime) -> bool:
    return ensure_aware(topic.expires_at) <= now


def active_topics(state: OrchestrationState, now: datetime | None = None) -> list[DeferredTopic]:
    now = now or utcnow()
    return [t for t in state.deferred.topics if not _is_expired(t, now)]


def get(state: OrchestrationState, topic_id: str) -> DeferredTopic | None:
    for t in state.deferred.topics:
        if t.id == topic_id:
            return t
    return None


def find_match(
    state: OrchestrationState,
    kind: DeferredKind | str,
    target: str | None = None,
    now: datetime | None = None,
) -> DeferredTopic | None:
    """Find an active topic that ``(kind, target)`` duplicates.

    Tool kinds need both targets to match. Other kinds match on kind alone
    unless both sides carry a label, in which case the labels must match.
    """
    kind = DeferredKind(kind)
    for topic in active_topics(state, now):
        if topic.kind != kind:
            continue
        if kind in TOOL_DEFERRED_KINDS:
            if target and topic.target and labels_match(target, topic.target):
                return topic
            continue
        if target and topic.target:
            if labels_match(target, topic.target):
                return topic
            continue
        return topic
    return None


def _append_summary(topic: DeferredTopic, summary: str, now: datetime) -> None:
    text = truncate(summary, SUMMARY_MAX_CHARS)
    if text:
        topic.summaries.append(TopicSummary(summary=text, timestamp=now))
        topic.summaries = topic.summaries[-MAX_SUMMARIES:]
    topic.last_updated_at = now
    topic.expires_at = now + TOPIC_TTL


def enrich(
    state: OrchestrationState,
    topic_id: str,
    summary: str,
    now: datetime | None = None,
) -> DeferredTopic | None:
    """Add a mention to an existing topic. Identity is unchanged."""
    topic = get(state, topic_id)
    if topic is None:
        return None
    now = now or utcnow()
    _append_summary(topic, summary, now)
    topic.trigger_count += 1
    logger.debug("Enriched deferred %s topic (mentions=%d)", topic.kind.value, topic.trigger_count)
    return topic


def defer(
    state: OrchestrationState,
    kind: DeferredKind | str,
    target: str | None = None,
    summary: str = "",
    now: datetime | None = None,
) -> tuple[DeferredTopic, bool]:
    """Record a postponed topic. Returns (topic, created)."""
    kind = DeferredKind(kind)
    now = now or utcnow()
    target = truncate(target, TARGET_MAX_CHARS) or None

    match = find_match(state, kind, target, now)
    if match is not None:
        if target and not match.target:
            match.target = target
        enrich(state, match.id, summary, now)
        return match, False

    topic = DeferredTopic(
        kind=kind,
        target=target,
        priority=DEFERRED_PRIORITY.get(kind, 2),
        created_at=now,
        last_updated_at=now,
        expires_at=now + TOPIC_TTL,
    )
    _append_summary(topic, summary, now)

    topics = active_topics(state, now)
    same_kind = [t for t in topics if t.kind == kind]
    cap = PER_KIND_CAP.get(kind, 2)
    while len(same_kind) >= cap:
        oldest = same_kind.pop(0)
        topics.remove(oldest)
        logger.info("Deferred %s cap reached, evicting oldest topic", kind.value)
    topics.append(topic)
    if len(topics) > MAX_TOPICS:
        logger.info("Deferred registry full, evicting %d oldest", len(topics) - MAX_TOPICS)
        topics = topics[-MAX_TOPICS:]
    state.deferred.topics = topics
    logger.info("Deferred new %s topic %r", kind.value, target or "")
    return topic, True


def remove(state: OrchestrationState, topic_id: str) -> bool:
    before = len(state.deferred.topics)
    state.deferred.topics = [t for t in state.deferred.topics if t.id != topic_id]
    return len(state.deferred.topics) != before


def find_next_of_kind(
    state: OrchestrationState,
    kind: DeferredKind | str,
    now: datetime | None = None,
) -> DeferredTopic | None:
    """Oldest active topic of ``kind``, used to chain once a session closes."""
    kind = DeferredKind(kind)
    for topic in active_topics(state, now):
        if topic.kind == kind:
            return topic
    return None


def pause_all(
    state: OrchestrationState,
    duration: timedelta = DECLINE_PAUSE,
    now: datetime | None = None,
) -> datetime:
    """Suppress proactive resurfacing of every topic for ``duration``."""
    now = now or utcnow()
    state.deferred.paused_until = now + duration
    logger.info("Deferred topics paused until %s", state.deferred.paused_until.isoformat())
    return state.deferred.paused_until


def is_paused(state: OrchestrationState, now: datetime | None = None) -> bool:
    until = state.deferred.paused_until
    if until is None:
        return False
    return (now or utcnow()) < ensure_aware(until)


def clear_pause(state: OrchestrationState) -> None:
    state.deferred.paused_until = None


def next_to_process(state: OrchestrationState, now: datetime | None = None) -> DeferredTopic | None:
    """Next topic to resurface: priority tier first, then oldest. None while paused."""
    now = now or utcnow()
    if is_paused(state, now):
        return None
    topics = active_topics(state, now)
    if not topics:
        return None
    return min(topics, key=lambda t: (t.priority, ensure_aware(t.created_at)))


def mark_processed(state: OrchestrationState, now: datetime | None = None) -> None:
    state.deferred.last_processed_at = now or utcnow()


def prune_expired(state: OrchestrationState, now: datetime | None = None) -> list[DeferredTopic]:
    now = now or utcnow()
    expired = [t for t in state.deferred.topics if _is_expired(t, now)]
    if expired:
        state.deferred.topics = [t for t in state.deferred.topics if not _is_expired(t, now)]
    return expired
