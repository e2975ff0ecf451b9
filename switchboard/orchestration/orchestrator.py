"""Turn orchestrator: the outer loop of the orchestration core.

One turn for one user/scope:
  log message -> debounce/merge -> load state -> sweep -> classify ->
  route -> apply effects -> run handler -> merge-save -> audit

Different users may run concurrently; a single user's turns are
serialized by the debounce check only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from switchboard.config import Settings
from switchboard.events import (
    SESSION_PAUSED,
    SESSION_RESUMED,
    STATE_SWEPT,
    TURN_ABORTED,
    TURN_ROUTED,
    Event,
    EventBus,
)
from switchboard.orchestration import lifecycle, stack
from switchboard.orchestration.audit import build_record
from switchboard.orchestration.debounce import Debouncer
from switchboard.orchestration.routing import RoutingDecision, RoutingReason, route
from switchboard.orchestration.schemas import HandlerName, OrchestrationState, SignalBundle
from switchboard.orchestration.signals import Thresholds
from switchboard.orchestration.sweeper import SweepReport, sweep
from switchboard.orchestration.turn import HandlerResult, TurnContext, TurnHandler, TurnOutcome
from switchboard.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class _LoadedState:
    state: OrchestrationState
    stack_updated_at: datetime | None
    report: SweepReport


class Orchestrator:
    """Runs the sweep -> route -> execute -> persist pipeline per turn."""

    def __init__(
        self,
        store: Any,
        settings: Settings,
        handlers: dict[HandlerName, TurnHandler] | None = None,
        messages: Any | None = None,
        classifier: Any | None = None,
        audit_log: Any | None = None,
        bus: EventBus | None = None,
        debouncer: Debouncer | None = None,
    ) -> None:
        if handlers is None:
            from switchboard.handlers import default_handlers

            handlers = default_handlers()
        self.store = store
        self.settings = settings
        self.handlers = handlers
        self.messages = messages
        self.classifier = classifier
        self.audit_log = audit_log
        self.bus = bus
        self.thresholds = Thresholds.from_settings(settings)
        self.sentry_repeat_window = timedelta(minutes=settings.sentry_repeat_window_minutes)
        if debouncer is None and messages is not None and settings.debounce_enabled:
            debouncer = Debouncer(messages, settings.debounce_wait_ms, settings.burst_window_ms)
        self.debouncer = debouncer

    # ------------------------------------------------------------------
    # handle_message()
    # ------------------------------------------------------------------

    async def handle_message(
        self,
        user_id: str,
        message: str,
        scope: str = "web",
        signals: SignalBundle | dict | None = None,
        now: datetime | None = None,
    ) -> TurnOutcome:
        """Full entry point for an incoming user message."""
        effective = message
        if self.messages is not None:
            logged = await self.messages.append(user_id, scope, message)
            if self.debouncer is not None:
                settled = await self.debouncer.settle(user_id, scope, logged.id, message, logged.created_at)
                if settled.aborted:
                    await self._emit(TURN_ABORTED, user_id, scope, {"message_id": logged.id})
                    return TurnOutcome(user_id=user_id, scope=scope, aborted=True)
                effective = settled.message

        now = now or utcnow()
        loaded = await self._load_and_sweep(user_id, scope, now)
        if signals is None and self.classifier is not None:
            bundle = await self.classifier.classify(effective, loaded.state)
        else:
            bundle = SignalBundle.parse_lenient(signals)

        return await self.run_turn(user_id, effective, bundle, scope=scope, now=now, loaded=loaded)

    async def _load_and_sweep(self, user_id: str, scope: str, now: datetime) -> _LoadedState:
        """Load the document, count the turn and sweep stale entries out of it."""
        state = await self.store.load(user_id, scope)
        loaded_stack_at = state.stack_updated_at
        state.turn_index += 1
        report = sweep(
            state,
            now,
            ttl_overrides=self.settings.session_ttl_overrides,
            paused_ttl=timedelta(minutes=self.settings.paused_slot_ttl_minutes),
            confirmation_ttl=timedelta(minutes=self.settings.confirmation_ttl_minutes),
            confirmation_turns=self.settings.confirmation_ttl_turns,
        )
        return _LoadedState(state, loaded_stack_at, report)

    # ------------------------------------------------------------------
    # run_turn()
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        user_id: str,
        message: str,
        signals: SignalBundle,
        scope: str = "web",
        now: datetime | None = None,
        loaded: _LoadedState | None = None,
    ) -> TurnOutcome:
        """Sweep, route, execute and persist one already-debounced turn.

        ``loaded`` is the document handle_message() already swept for the
        classifier; without it the state is loaded and swept here.
        """
        now = now or utcnow()
        if loaded is None:
            loaded = await self._load_and_sweep(user_id, scope, now)
        state, loaded_stack_at, report = loaded.state, loaded.stack_updated_at, loaded.report

        before = stack.get_active(state)
        decision = route(
            signals,
            state,
            now,
            thresholds=self.thresholds,
            sentry_repeat_window=self.sentry_repeat_window,
            message=message,
        )
        logger.info(
            "Turn %d for %s/%s -> %s (%s)",
            state.turn_index,
            user_id,
            scope,
            decision.target.value,
            decision.reason.value,
        )

        ctx = TurnContext(
            user_id=user_id,
            scope=scope,
            message=message,
            signals=signals,
            state=state,
            decision=decision,
            now=now,
            thresholds=self.thresholds,
            sentry_repeat_window=self.sentry_repeat_window,
            resumed=report.resumed_session,
        )
        events = lifecycle.apply_effects(ctx)

        result = await self._execute(ctx)
        if result.resumed is not None:
            ctx.resumed = result.resumed

        after = stack.get_active(state)
        record = build_record(decision, before, after, state.turn_index, report.as_dict())
        state.updated_at = now
        state = await self.store.save(user_id, scope, state, loaded_stack_at)

        if self.audit_log is not None and self.settings.audit_enabled:
            try:
                await self.audit_log.record(user_id, scope, record)
            except Exception:
                logger.warning("Failed to persist audit record for %s/%s", user_id, scope)
        await self._emit(TURN_ROUTED, user_id, scope, record)
        if not report.empty:
            await self._emit(STATE_SWEPT, user_id, scope, report.as_dict())
        if SESSION_PAUSED in events and state.paused is not None:
            await self._emit(SESSION_PAUSED, user_id, scope, {"kind": state.paused.kind.value})
        if ctx.resumed is not None:
            await self._emit(SESSION_RESUMED, user_id, scope, {"kind": ctx.resumed.kind.value})

        return TurnOutcome(
            user_id=user_id,
            scope=scope,
            target=decision.target.value,
            message=message,
            state=state.to_blob(),
            audit=record,
            resumed=(ctx.resumed.resume_brief or ctx.resumed.topic or ctx.resumed.kind.value) if ctx.resumed else None,
            handler_result={"directive": result.directive, **result.data},
        )

    async def _execute(self, ctx: TurnContext) -> HandlerResult:
        """Run the chosen handler; on failure degrade to the companion."""
        handler = self.handlers.get(ctx.decision.target)
        if handler is None:
            logger.warning("No handler registered for %s, using companion", ctx.decision.target.value)
            return await self._fallback(ctx)
        try:
            return await handler.handle(ctx)
        except Exception:
            logger.exception("Handler %s failed, degrading to companion", ctx.decision.target.value)
            return await self._fallback(ctx)

    async def _fallback(self, ctx: TurnContext) -> HandlerResult:
        if ctx.decision.target is HandlerName.COMPANION:
            return HandlerResult("chat", {"degraded": True})
        companion = self.handlers.get(HandlerName.COMPANION)
        if companion is None:
            return HandlerResult("chat", {"degraded": True})
        fallback_ctx = replace(
            ctx,
            decision=RoutingDecision(HandlerName.COMPANION, RoutingReason.DEFAULT, ctx.decision.honored, ctx.decision.filtered),
        )
        try:
            result = await companion.handle(fallback_ctx)
        except Exception:
            logger.exception("Companion fallback failed")
            return HandlerResult("chat", {"degraded": True})
        result.data["degraded"] = True
        return result

    # ------------------------------------------------------------------
    # reset()
    # ------------------------------------------------------------------

    async def reset(self, user_id: str, scope: str = "web", now: datetime | None = None) -> OrchestrationState:
        """Clear every orchestration structure for a user/scope."""
        state = await self.store.load(user_id, scope)
        fresh = lifecycle.reset_state(state, now)
        return await self.store.save(user_id, scope, fresh, fresh.stack_updated_at)

    async def _emit(self, event_type: str, user_id: str, scope: str, data: dict[str, Any]) -> None:
        if self.bus is None:
            return
        await self.bus.emit(Event(type=event_type, user_id=user_id, scope=scope, data=data))
