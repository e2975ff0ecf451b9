"""Tests for the built-in turn handlers (architect, companion, safety)."""

from datetime import UTC, datetime, timedelta

from switchboard.handlers import ArchitectHandler, CompanionHandler, SafetyHandler, default_handlers
from switchboard.orchestration import deferred, lifecycle, queue, stack
from switchboard.orchestration.kinds import DEEP_REASONS_STATE_KEY
from switchboard.orchestration.routing import route
from switchboard.orchestration.schemas import (
    ConfirmationType,
    DeferredKind,
    HandlerName,
    OrchestrationState,
    PauseReason,
    SessionKind,
    SignalBundle,
)
from switchboard.orchestration.turn import HandlerResult, TurnContext

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _turn(handler, state: OrchestrationState, minute: int, message: str = "...", **blocks) -> HandlerResult:
    """Route, apply effects and run ``handler`` the way the orchestrator does."""
    now = T0 + timedelta(minutes=minute)
    state.turn_index += 1
    signals = SignalBundle.parse_lenient(blocks)
    ctx = TurnContext(
        user_id="user-1",
        scope="web",
        message=message,
        signals=signals,
        state=state,
        decision=route(signals, state, now, message=message),
        now=now,
    )
    lifecycle.apply_effects(ctx)
    return await handler.handle(ctx)


def _tool(response: str = "none", target: str | None = None) -> dict:
    return {"detected": True, "confidence": 0.9, "target_hint": target, "user_response": response}


def _resolution(**flags) -> dict:
    return {"confidence": 0.9, **flags}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_default_handlers_cover_every_target():
    handlers = default_handlers()
    assert set(handlers) == set(HandlerName)


# ---------------------------------------------------------------------------
# Architect: tool flows
# ---------------------------------------------------------------------------


async def test_tool_flow_walks_phases_to_completion(state):
    architect = ArchitectHandler()

    result = await _turn(architect, state, 0, create_action=_tool())
    assert result.directive == "tool_exploring"

    result = await _turn(architect, state, 1, create_action=_tool(target="evening walk"))
    assert result.directive == "tool_previewing"
    assert stack.get_active(state).meta["action_target"] == "evening walk"

    result = await _turn(architect, state, 2, create_action=_tool("yes"))
    assert result.directive == "tool_awaiting_confirm"

    result = await _turn(architect, state, 3, create_action=_tool("yes"))
    assert result.directive == "tool_completed"
    assert result.data["target"] == "evening walk"
    assert state.stack == []


async def test_tool_flow_declined(state):
    architect = ArchitectHandler()
    await _turn(architect, state, 0, track_progress=_tool())

    result = await _turn(architect, state, 1, track_progress=_tool("no"))

    assert result.directive == "tool_cancelled"
    assert state.stack == []


async def test_tool_flow_modify_returns_to_first_phase(state):
    architect = ArchitectHandler()
    await _turn(architect, state, 0, update_action=_tool(target="reading"))
    await _turn(architect, state, 1, update_action=_tool())

    result = await _turn(architect, state, 2, update_action=_tool("modify"))

    assert result.directive == "tool_identifying"


async def test_dual_intent_question(state):
    result = await _turn(ArchitectHandler(), state, 0, create_action=_tool(), activate_action=_tool())

    assert result.directive == "ask_dual_intent"
    assert result.data == {"first": "create_action", "second": "activate_action"}


# ---------------------------------------------------------------------------
# Architect: deep reasons / serious topics
# ---------------------------------------------------------------------------


async def test_deep_reasons_keeps_blob_state(state):
    architect = ArchitectHandler()
    deep = {"opportunity": True, "confidence": 0.9, "action_target": "morning pages"}

    result = await _turn(architect, state, 0, deep_reasons=deep)
    assert result.directive == "deep_clarify"
    assert state.get_extra(DEEP_REASONS_STATE_KEY) == {
        "action_target": "morning pages",
        "phase": "clarify",
        "turns": 1,
    }

    result = await _turn(architect, state, 1)
    assert result.directive == "deep_re_consent"
    assert state.get_extra(DEEP_REASONS_STATE_KEY)["turns"] == 2
    assert stack.get_active(state).phase == "re_consent"


async def test_serious_topic_progresses_and_closes(state):
    architect = ArchitectHandler()
    directives = [
        (await _turn(architect, state, 0, topic_depth={"value": "serious", "confidence": 0.9})).directive
    ]
    for minute in range(1, 7):
        directives.append((await _turn(architect, state, minute)).directive)

    assert directives == [
        "topic_opening",
        "topic_exploring",
        "topic_exploring",
        "topic_converging",
        "topic_converging",
        "topic_closing",
        "topic_closed",
    ]
    assert state.stack == []


# ---------------------------------------------------------------------------
# Companion
# ---------------------------------------------------------------------------


async def test_companion_default_chat(state):
    result = await _turn(CompanionHandler(), state, 0)
    assert result.directive == "chat"


async def test_companion_resurfaces_queued_intent(state):
    queue.enqueue(state, HandlerName.COMPANION, "interrupt:digression:holidays", "and holidays!", now=T0)

    result = await _turn(CompanionHandler(), state, 1)

    assert result.directive == "resurface_intent"
    assert result.data["reason"] == "interrupt:digression:holidays"
    assert state.queue == []


async def test_companion_offers_deferred_topic_once_per_cooldown(state):
    deferred.defer(state, DeferredKind.TOPIC_SERIOUS, "my sister", now=T0)
    deferred.defer(state, DeferredKind.TOPIC_LIGHT, "films", now=T0)
    companion = CompanionHandler()

    result = await _turn(companion, state, 1)

    assert result.directive == "offer_deferred_topic"
    assert result.data["target"] == "my sister"
    assert state.pending_confirmation.type == ConfirmationType.RELAUNCH_CONSENT

    state.pending_confirmation = None
    result = await _turn(companion, state, 2)
    assert result.directive == "chat"


async def test_companion_confirms_profile_fact(state):
    companion = CompanionHandler()

    result = await _turn(companion, state, 0, profile_fact={"key": "wake_time", "value": "7am", "confidence": 0.9})

    assert result.directive == "confirm_profile_fact"
    assert stack.get_active(state).kind == SessionKind.PROFILE_CONFIRMATION
    assert state.pending_confirmation.type == ConfirmationType.PROFILE_FACT

    result = await _turn(
        companion,
        state,
        1,
        pending_resolution={"status": "resolved", "decision_code": "confirm", "confidence": 0.9},
    )
    assert result.directive == "confirmation_accepted"
    assert state.get_extra("profile_facts") == {"wake_time": "7am"}
    assert state.stack == []


async def test_companion_reasks_unclear_answer(state):
    companion = CompanionHandler()
    await _turn(companion, state, 0, profile_fact={"key": "city", "value": "Lyon", "confidence": 0.9})

    result = await _turn(companion, state, 1, pending_resolution={"status": "unresolved", "confidence": 0.9})

    assert result.directive == "reask_confirmation"
    assert result.data == {"type": "profile_fact"}


# ---------------------------------------------------------------------------
# Safety
# ---------------------------------------------------------------------------


async def test_firefighter_resolves_and_resumes_paused_session(state):
    firefighter = SafetyHandler(PauseReason.FIREFIGHTER)
    stack.upsert(state, SessionKind.TOPIC_SERIOUS, phase="exploring", topic="exams", now=T0)

    result = await _turn(firefighter, state, 1, safety={"level": "firefighter", "confidence": 0.9})
    assert result.directive == "safety_acute"
    assert state.paused.kind == SessionKind.TOPIC_SERIOUS

    result = await _turn(firefighter, state, 2, safety_resolution=_resolution(user_stabilizing=True))
    assert result.directive == "safety_stabilizing"
    assert stack.get_active(state).meta["stabilizing_turns"] == 1

    result = await _turn(firefighter, state, 3, safety_resolution=_resolution(user_stabilizing=True))
    assert result.directive == "safety_confirming"

    result = await _turn(firefighter, state, 4, safety_resolution=_resolution(user_confirms_safe=True))
    assert result.directive == "safety_resolved"
    assert result.resumed.kind == SessionKind.TOPIC_SERIOUS
    assert result.resumed.phase == "exploring"
    assert state.paused is None
    assert stack.active_safety(state) is None


async def test_firefighter_escalates_to_sentry(state):
    firefighter = SafetyHandler(PauseReason.FIREFIGHTER)
    await _turn(firefighter, state, 0, safety={"level": "firefighter", "confidence": 0.9})

    result = await _turn(firefighter, state, 1, safety_resolution=_resolution(escalate_to_sentry=True))

    assert result.directive == "safety_escalated"
    assert stack.get_active(state).kind == SessionKind.SAFETY_SENTRY


async def test_firefighter_escalation_respects_sentry_repeat_window(state):
    firefighter = SafetyHandler(PauseReason.FIREFIGHTER)
    state.safety.last_sentry_at = T0

    result = await _turn(firefighter, state, 1, safety={"level": "sentry", "confidence": 0.9})
    assert result.directive == "safety_acute"
    assert stack.get_active(state).kind == SessionKind.SAFETY_FIREFIGHTER

    await _turn(firefighter, state, 2, safety_resolution=_resolution(user_stabilizing=True))
    result = await _turn(firefighter, state, 3, safety_resolution=_resolution(escalate_to_sentry=True))

    assert result.directive == "safety_acute"
    assert result.data["escalation_suppressed"] is True
    assert stack.list_kinds(state) == [SessionKind.SAFETY_FIREFIGHTER]
    assert stack.get_active(state).phase == "acute"
    assert state.safety.last_sentry_at == T0


async def test_safety_handler_without_session(state):
    result = await SafetyHandler(PauseReason.SENTRY).handle(
        TurnContext(
            user_id="u",
            scope="web",
            message="",
            signals=SignalBundle(),
            state=state,
            decision=route(SignalBundle(), state, T0),
            now=T0,
        )
    )
    assert result.directive == "safety_check_in"
