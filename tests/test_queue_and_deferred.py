"""Tests for the intent queue and the deferred topic registry."""

from datetime import UTC, datetime, timedelta

from switchboard.orchestration import deferred, queue
from switchboard.orchestration.schemas import DeferredKind, HandlerName

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Intent queue
# ---------------------------------------------------------------------------


def test_enqueue_dedups_by_reason(state):
    assert queue.enqueue(state, HandlerName.COMPANION, "interrupt:digression:holiday", "x", now=NOW)
    assert not queue.enqueue(state, HandlerName.COMPANION, "interrupt:digression:holiday", "y", now=NOW)
    assert len(state.queue) == 1


def test_enqueue_is_bounded_keeping_newest(state):
    for i in range(queue.QUEUE_LIMIT + 3):
        queue.enqueue(state, HandlerName.ARCHITECT, f"reason-{i}", now=NOW + timedelta(seconds=i))

    assert len(state.queue) == queue.QUEUE_LIMIT
    assert state.queue[0].reason == "reason-3"
    assert state.queue[-1].reason == f"reason-{queue.QUEUE_LIMIT + 2}"


def test_enqueue_truncates_long_fields(state):
    queue.enqueue(state, HandlerName.COMPANION, "r" * 500, "e" * 500, now=NOW)
    item = state.queue[0]
    assert len(item.reason) <= queue.REASON_MAX_CHARS
    assert len(item.message_excerpt) <= queue.EXCERPT_MAX_CHARS


def test_prune_managed_only_touches_its_family(state):
    queue.enqueue(state, HandlerName.ARCHITECT, "dual_tool:create_action", now=NOW)
    queue.enqueue(state, HandlerName.ARCHITECT, "dual_tool:track_progress", now=NOW)
    queue.enqueue(state, HandlerName.COMPANION, "interrupt:digression:cooking", now=NOW)

    removed = queue.prune_managed(state, "dual_tool:", keep_reasons=["dual_tool:track_progress"])

    assert removed == 1
    assert [q.reason for q in state.queue] == ["dual_tool:track_progress", "interrupt:digression:cooking"]


def test_queue_prune_expired_and_pop(state):
    queue.enqueue(state, HandlerName.COMPANION, "old", now=NOW - timedelta(hours=3))
    queue.enqueue(state, HandlerName.COMPANION, "fresh", now=NOW)

    expired = queue.prune_expired(state, NOW)

    assert [q.reason for q in expired] == ["old"]
    assert queue.has_reason(state, "fresh")
    assert queue.pop_next(state).reason == "fresh"
    assert queue.pop_next(state) is None


# ---------------------------------------------------------------------------
# Deferred registry: dedup / enrichment
# ---------------------------------------------------------------------------


def test_defer_same_label_enriches_instead_of_duplicating(state):
    first, created = deferred.defer(state, DeferredKind.TOPIC_SERIOUS, "Mon travail", "first mention", now=NOW)
    later = NOW + timedelta(minutes=5)
    second, created_again = deferred.defer(
        state, DeferredKind.TOPIC_SERIOUS, "mon travail !", "second mention", now=later
    )

    assert created and not created_again
    assert second.id == first.id
    assert second.trigger_count == 2
    assert [s.summary for s in second.summaries] == ["first mention", "second mention"]
    assert second.expires_at == later + deferred.TOPIC_TTL
    assert len(state.deferred.topics) == 1


def test_defer_containment_matches(state):
    deferred.defer(state, DeferredKind.CREATE_ACTION, "running", now=NOW)
    _, created = deferred.defer(state, DeferredKind.CREATE_ACTION, "running every morning", now=NOW)
    assert not created


def test_tool_kinds_need_matching_targets(state):
    deferred.defer(state, DeferredKind.CREATE_ACTION, "running", now=NOW)
    _, created = deferred.defer(state, DeferredKind.CREATE_ACTION, "meditation", now=NOW)
    _, created_unlabeled = deferred.defer(state, DeferredKind.CREATE_ACTION, None, now=NOW)

    assert created
    assert created_unlabeled


def test_topic_kinds_match_on_kind_when_unlabeled(state):
    deferred.defer(state, DeferredKind.TOPIC_LIGHT, None, "chat about films", now=NOW)
    topic, created = deferred.defer(state, DeferredKind.TOPIC_LIGHT, "films", "again", now=NOW)

    assert not created
    assert topic.target == "films"


def test_summaries_are_capped(state):
    for i in range(deferred.MAX_SUMMARIES + 2):
        deferred.defer(state, DeferredKind.DEEP_REASONS, "procrastination", f"mention {i}", now=NOW)

    topic = state.deferred.topics[0]
    assert len(topic.summaries) == deferred.MAX_SUMMARIES
    assert topic.summaries[-1].summary == f"mention {deferred.MAX_SUMMARIES + 1}"


# ---------------------------------------------------------------------------
# Deferred registry: bounds
# ---------------------------------------------------------------------------


def test_per_kind_cap_evicts_oldest(state):
    deferred.defer(state, DeferredKind.UPDATE_ACTION, "alpha", now=NOW)
    deferred.defer(state, DeferredKind.UPDATE_ACTION, "bravo", now=NOW + timedelta(seconds=1))
    deferred.defer(state, DeferredKind.UPDATE_ACTION, "charlie", now=NOW + timedelta(seconds=2))

    targets = [t.target for t in state.deferred.topics]
    assert targets == ["bravo", "charlie"]


def test_global_cap_evicts_oldest(state):
    labels = [
        (DeferredKind.TOPIC_SERIOUS, "a"),
        (DeferredKind.DEEP_REASONS, "b"),
        (DeferredKind.CREATE_ACTION, "c"),
        (DeferredKind.TRACK_PROGRESS, "d"),
        (DeferredKind.TOPIC_LIGHT, "e"),
        (DeferredKind.ACTIVATE_ACTION, "f"),
    ]
    for i, (kind, label) in enumerate(labels):
        deferred.defer(state, kind, label, now=NOW + timedelta(seconds=i))

    assert len(state.deferred.topics) == deferred.MAX_TOPICS
    assert "a" not in [t.target for t in state.deferred.topics]


# ---------------------------------------------------------------------------
# Deferred registry: release order / pause
# ---------------------------------------------------------------------------


def test_next_to_process_by_priority_then_age(state):
    deferred.defer(state, DeferredKind.TOPIC_LIGHT, "films", now=NOW)
    deferred.defer(state, DeferredKind.CREATE_ACTION, "running", now=NOW + timedelta(seconds=1))
    deferred.defer(state, DeferredKind.TOPIC_SERIOUS, "family", now=NOW + timedelta(seconds=2))
    deferred.defer(state, DeferredKind.DEEP_REASONS, "procrastination", now=NOW + timedelta(seconds=3))

    assert deferred.next_to_process(state, NOW).target == "family"


def test_pause_all_suppresses_release(state):
    deferred.defer(state, DeferredKind.TOPIC_LIGHT, "films", now=NOW)
    deferred.pause_all(state, now=NOW)

    assert deferred.is_paused(state, NOW + timedelta(minutes=30))
    assert deferred.next_to_process(state, NOW + timedelta(minutes=30)) is None
    assert deferred.next_to_process(state, NOW + deferred.DECLINE_PAUSE + timedelta(seconds=1)) is not None


def test_expired_topics_are_invisible_and_pruned(state):
    deferred.defer(state, DeferredKind.TOPIC_LIGHT, "films", now=NOW)
    later = NOW + deferred.TOPIC_TTL + timedelta(seconds=1)

    assert deferred.find_match(state, DeferredKind.TOPIC_LIGHT, "films", later) is None
    assert len(deferred.prune_expired(state, later)) == 1
    assert state.deferred.topics == []


def test_find_next_of_kind_returns_oldest(state):
    deferred.defer(state, DeferredKind.CREATE_ACTION, "running", now=NOW)
    deferred.defer(state, DeferredKind.CREATE_ACTION, "reading", now=NOW + timedelta(seconds=1))

    assert deferred.find_next_of_kind(state, DeferredKind.CREATE_ACTION, NOW).target == "running"
    assert deferred.find_next_of_kind(state, DeferredKind.TRACK_PROGRESS, NOW) is None
