"""Tests for the staleness sweeper."""

from datetime import UTC, datetime, timedelta

from switchboard.orchestration import confirmations, deferred, pause, queue, stack
from switchboard.orchestration.kinds import DEEP_REASONS_STATE_KEY
from switchboard.orchestration.schemas import (
    ConfirmationType,
    DeferredKind,
    HandlerName,
    PauseReason,
    SessionKind,
)
from switchboard.orchestration.sweeper import sweep

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


def test_fresh_state_sweeps_nothing(state):
    stack.upsert(state, SessionKind.CREATE_ACTION, now=NOW)
    report = sweep(state, NOW + timedelta(minutes=1))

    assert report.empty
    assert len(state.stack) == 1


def test_stale_sessions_closed_per_kind_ttl(state):
    stack.upsert(state, SessionKind.TOPIC_SERIOUS, now=NOW)
    stack.upsert(state, SessionKind.ACTIVATE_ACTION, now=NOW)

    report = sweep(state, NOW + timedelta(minutes=11))

    assert report.sessions == ["activate_action_flow"]
    assert stack.list_kinds(state) == [SessionKind.TOPIC_SERIOUS]


def test_ttl_override_from_settings(state):
    stack.upsert(state, SessionKind.TOPIC_SERIOUS, now=NOW)

    report = sweep(state, NOW + timedelta(minutes=6), ttl_overrides={"topic_serious": 5})

    assert report.sessions == ["topic_serious"]


def test_stale_deep_reasons_drops_blob_state(state):
    stack.upsert(state, SessionKind.DEEP_REASONS, now=NOW)
    state.set_extra(DEEP_REASONS_STATE_KEY, {"phase": "clarify"})

    sweep(state, NOW + timedelta(hours=3))

    assert state.get_extra(DEEP_REASONS_STATE_KEY) is None


def test_resolved_safety_session_closed(state):
    stack.upsert(state, SessionKind.SAFETY_SENTRY, phase="resolved", now=NOW)

    report = sweep(state, NOW)

    assert report.sessions == ["safety_sentry_flow"]
    assert state.stack == []


def test_expired_queue_and_deferred(state):
    queue.enqueue(state, HandlerName.COMPANION, "old", now=NOW - timedelta(hours=3))
    deferred.defer(state, DeferredKind.TOPIC_LIGHT, "films", now=NOW - timedelta(hours=49))

    report = sweep(state, NOW)

    assert report.queue == 1
    assert report.deferred == 1
    assert state.queue == [] and state.deferred.topics == []


def test_expired_confirmation_by_age_and_turns(state):
    state.turn_index = 1
    confirmations.open_confirmation(state, ConfirmationType.RELAUNCH_CONSENT, HandlerName.COMPANION, now=NOW)

    assert sweep(state, NOW + timedelta(minutes=1)).confirmation is None
    state.turn_index = 4
    report = sweep(state, NOW + timedelta(minutes=1))

    assert report.confirmation == "relaunch_consent"
    assert state.pending_confirmation is None

    confirmations.open_confirmation(state, ConfirmationType.PROFILE_FACT, HandlerName.COMPANION, now=NOW)
    assert sweep(state, NOW + timedelta(minutes=6)).confirmation == "profile_fact"


def test_old_paused_slot_moves_to_deferred(state):
    session = stack.upsert(state, SessionKind.CREATE_ACTION, meta={"action_target": "yoga"}, now=NOW)
    stack.upsert(state, SessionKind.SAFETY_FIREFIGHTER, now=NOW)
    pause.pause(state, session, PauseReason.FIREFIGHTER, resume_context="adding yoga", now=NOW)

    report = sweep(state, NOW + timedelta(hours=5))

    assert report.paused == "create_action_flow"
    assert report.paused_to_deferred
    assert state.paused is None
    topic = state.deferred.topics[0]
    assert topic.kind == DeferredKind.CREATE_ACTION
    assert topic.target == "yoga"


def test_lapsed_safety_resumes_paused_session(state):
    session = stack.upsert(state, SessionKind.TOPIC_SERIOUS, topic="exams", now=NOW)
    pause.pause(state, session, PauseReason.FIREFIGHTER, now=NOW)
    stack.upsert(state, SessionKind.SAFETY_FIREFIGHTER, now=NOW)

    report = sweep(state, NOW + timedelta(minutes=25))

    assert report.sessions == ["safety_firefighter_flow"]
    assert report.resumed == "topic_serious"
    assert report.resumed_session is stack.get_active(state)
    assert "resumed_session" not in report.as_dict()
    assert state.paused is None
    assert stack.get_active(state).topic == "exams"


def test_expired_decline_pause_cleared(state):
    deferred.pause_all(state, now=NOW)

    report = sweep(state, NOW + timedelta(hours=3))

    assert report.deferred_pause_cleared
    assert state.deferred.paused_until is None
