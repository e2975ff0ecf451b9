"""Routing policy: pure function from (signals, state) to one target handler.

Precedence, highest first:
  1. safety signal above threshold, or an active safety session
  2. pending confirmation awaiting an answer
  3. mother signal (one intent claims the turn; several go through
     dual-intent negotiation)
  4. active non-safety session (irrelevant content is queued or deferred)
  5. neutral companion

An active session is checked before mother signals: a new intent of
another kind is deferred rather than evicting the session, and only a
stop interrupt closes it and lets rules 3 and 5 run.

route() never mutates state. The decision carries the planned effects;
the orchestrator applies them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from switchboard.orchestration import confirmations, stack
from switchboard.orchestration.kinds import owner_for
from switchboard.orchestration.safety import SENTRY_REPEAT_WINDOW, TIER_KIND, effective_tier
from switchboard.orchestration.schemas import (
    HandlerName,
    OrchestrationState,
    PauseReason,
    SessionKind,
    SignalBundle,
)
from switchboard.orchestration.signals import IntentCandidate, Thresholds, collect_intents
from switchboard.utils import utcnow

STOP_INTERRUPTS = ("explicit_stop", "bored")
SWITCH_INTERRUPTS = ("switch_topic", "digression")
INTERRUPT_REASON_PREFIX = "interrupt:"


class RoutingReason(StrEnum):
    SAFETY_ESCALATION = "safety_escalation"
    SAFETY_ACTIVE = "safety_active"
    PENDING_CONFIRMATION = "pending_confirmation"
    MOTHER_SIGNAL = "mother_signal"
    DUAL_INTENT = "dual_intent"
    ACTIVE_SESSION = "active_session"
    DEFAULT = "default"


class EffectType(StrEnum):
    PAUSE_ACTIVE = "pause_active"
    DEFER_ACTIVE = "defer_active"
    OPEN_SAFETY = "open_safety"
    ESCALATE_SAFETY = "escalate_safety"
    RESOLVE_CONFIRMATION = "resolve_confirmation"
    CLOSE_ACTIVE = "close_active"
    OPEN_SESSION = "open_session"
    CONTINUE_SESSION = "continue_session"
    DEFER_TOPIC = "defer_topic"
    ENQUEUE_INTENT = "enqueue_intent"
    ASK_DUAL_INTENT = "ask_dual_intent"


@dataclass
class Effect:
    type: EffectType
    kind: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type.value}
        if self.kind:
            out["kind"] = self.kind
        if self.data:
            out["data"] = self.data
        return out


@dataclass
class RoutingDecision:
    target: HandlerName
    reason: RoutingReason
    honored: list[str] = field(default_factory=list)
    filtered: list[str] = field(default_factory=list)
    effects: list[Effect] = field(default_factory=list)

    def effects_of(self, effect_type: EffectType) -> list[Effect]:
        return [e for e in self.effects if e.type is effect_type]

    def has_effect(self, effect_type: EffectType) -> bool:
        return any(e.type is effect_type for e in self.effects)


def _names(candidates: list[IntentCandidate]) -> list[str]:
    return [c.name for c in candidates]


def _candidate_data(c: IntentCandidate) -> dict[str, Any]:
    data: dict[str, Any] = {"signal": c.name, "kind": c.kind.value, "confidence": c.confidence}
    if c.target:
        data["target"] = c.target
    if c.meta:
        data["meta"] = dict(c.meta)
    return data


def _defer_effect(c: IntentCandidate, excerpt: str) -> Effect:
    data = _candidate_data(c)
    data["summary"] = excerpt
    return Effect(EffectType.DEFER_TOPIC, kind=c.deferred_kind.value if c.deferred_kind else None, data=data)


def route(
    signals: SignalBundle,
    state: OrchestrationState,
    now: datetime | None = None,
    *,
    thresholds: Thresholds = Thresholds(),
    sentry_repeat_window: timedelta = SENTRY_REPEAT_WINDOW,
    message: str = "",
) -> RoutingDecision:
    """Pick exactly one target handler for this turn and plan its effects."""
    now = now or utcnow()
    candidates, filtered = collect_intents(signals, thresholds)
    honored: list[str] = []
    effects: list[Effect] = []

    # 1. Safety
    safety = signals.safety
    safety_session = stack.active_safety(state)
    if safety.level != "none" and safety.confidence < thresholds.safety:
        filtered.append(f"safety.{safety.level}")
    elif safety.level != "none":
        tier = effective_tier(safety.level, state, now, sentry_repeat_window)
        honored.append(f"safety.{safety.level}")
        if tier.value != safety.level:
            filtered.append("safety.sentry_repeat")
        filtered.extend(_names(candidates))

        if safety_session is None:
            active = stack.active_non_safety(state)
            if active is not None:
                kind = EffectType.PAUSE_ACTIVE if state.paused is None else EffectType.DEFER_ACTIVE
                effects.append(Effect(kind, kind=active.kind.value, data={"reason": tier.value}))
            effects.append(
                Effect(
                    EffectType.OPEN_SAFETY,
                    kind=TIER_KIND[tier].value,
                    data={"tier": tier.value, "immediacy": safety.immediacy},
                )
            )
            return RoutingDecision(
                owner_for(TIER_KIND[tier]), RoutingReason.SAFETY_ESCALATION, honored, filtered, effects
            )

        if safety_session.kind == SessionKind.SAFETY_FIREFIGHTER and tier is PauseReason.SENTRY:
            effects.append(Effect(EffectType.ESCALATE_SAFETY, kind=SessionKind.SAFETY_SENTRY.value))
            return RoutingDecision(HandlerName.SENTRY, RoutingReason.SAFETY_ESCALATION, honored, filtered, effects)

        effects.append(Effect(EffectType.CONTINUE_SESSION, kind=safety_session.kind.value))
        return RoutingDecision(safety_session.owner, RoutingReason.SAFETY_ACTIVE, honored, filtered, effects)

    if safety_session is not None:
        filtered.extend(_names(candidates))
        effects.append(Effect(EffectType.CONTINUE_SESSION, kind=safety_session.kind.value))
        return RoutingDecision(safety_session.owner, RoutingReason.SAFETY_ACTIVE, honored, filtered, effects)

    # 2. Pending confirmation
    pending = state.pending_confirmation
    if pending is not None:
        outcome = confirmations.interpret(pending, signals.pending_resolution, thresholds.pending_resolution)
        if signals.pending_resolution.status != "unrelated":
            honored.append("pending_resolution")
        filtered.extend(_names(candidates))
        effects.append(
            Effect(
                EffectType.RESOLVE_CONFIRMATION,
                kind=pending.type.value,
                data={"outcome": outcome.value, "confirmation_id": pending.id},
            )
        )
        return RoutingDecision(pending.owner, RoutingReason.PENDING_CONFIRMATION, honored, filtered, effects)

    # 4. Active session keeps the turn unless the user stops it
    interrupt = signals.interrupt
    strong_interrupt = interrupt.kind != "none" and interrupt.confidence >= thresholds.interrupt
    if interrupt.kind != "none" and not strong_interrupt:
        filtered.append(f"interrupt.{interrupt.kind}")

    active = stack.active_non_safety(state)
    if active is not None:
        if strong_interrupt and interrupt.kind in STOP_INTERRUPTS:
            honored.append(f"interrupt.{interrupt.kind}")
            effects.append(Effect(EffectType.CLOSE_ACTIVE, kind=active.kind.value, data={"outcome": "abandoned"}))
        else:
            for c in candidates:
                if c.kind == active.kind:
                    honored.append(c.name)
                elif c.deferred_kind is not None:
                    honored.append(c.name)
                    effects.append(_defer_effect(c, message))
                else:
                    filtered.append(c.name)
            if strong_interrupt and interrupt.kind in SWITCH_INTERRUPTS:
                honored.append(f"interrupt.{interrupt.kind}")
                label = interrupt.deferred_topic_formalized or interrupt.kind
                effects.append(
                    Effect(
                        EffectType.ENQUEUE_INTENT,
                        data={
                            "handler": HandlerName.COMPANION.value,
                            "reason": f"{INTERRUPT_REASON_PREFIX}{interrupt.kind}:{label}",
                            "excerpt": message,
                        },
                    )
                )
            effects.append(Effect(EffectType.CONTINUE_SESSION, kind=active.kind.value))
            return RoutingDecision(active.owner, RoutingReason.ACTIVE_SESSION, honored, filtered, effects)
    elif strong_interrupt:
        filtered.append(f"interrupt.{interrupt.kind}")

    # 3. Mother signal
    if len(candidates) == 1:
        winner = candidates[0]
        honored.append(winner.name)
        effects.append(Effect(EffectType.OPEN_SESSION, kind=winner.kind.value, data=_candidate_data(winner)))
        return RoutingDecision(owner_for(winner.kind), RoutingReason.MOTHER_SIGNAL, honored, filtered, effects)

    if len(candidates) >= 2:
        tools = [c for c in candidates if c.family == "tool"]
        if len(candidates) == 2 and len(tools) == 2:
            first, second = candidates
            honored.extend(_names(candidates))
            effects.append(
                Effect(
                    EffectType.ASK_DUAL_INTENT,
                    data={"first": _candidate_data(first), "second": _candidate_data(second)},
                )
            )
            return RoutingDecision(HandlerName.ARCHITECT, RoutingReason.DUAL_INTENT, honored, filtered, effects)

        winner, *rest = candidates
        honored.extend(_names(candidates))
        effects.append(Effect(EffectType.OPEN_SESSION, kind=winner.kind.value, data=_candidate_data(winner)))
        for c in rest:
            effects.append(_defer_effect(c, message))
        return RoutingDecision(owner_for(winner.kind), RoutingReason.DUAL_INTENT, honored, filtered, effects)

    # 5. Default
    return RoutingDecision(HandlerName.COMPANION, RoutingReason.DEFAULT, honored, filtered, effects)
