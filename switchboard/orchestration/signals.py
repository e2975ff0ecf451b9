"""Threshold gating and mother-signal candidate extraction.

Turns a SignalBundle into a priority-ordered list of intent candidates.
Every block is gated by its confidence against a fixed threshold; blocks
that were present but too weak are reported as filtered.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from switchboard.config import Settings
from switchboard.orchestration.kinds import spec_for
from switchboard.orchestration.schemas import DeferredKind, SessionKind, SignalBundle

# Highest first
MOTHER_PRIORITY = (
    "topic_exploration",
    "deep_reasons",
    "breakdown_action",
    "create_action",
    "update_action",
    "activate_action",
    "track_progress",
)

_TOOL_SIGNALS = {
    "create_action": SessionKind.CREATE_ACTION,
    "update_action": SessionKind.UPDATE_ACTION,
    "breakdown_action": SessionKind.BREAKDOWN_ACTION,
    "activate_action": SessionKind.ACTIVATE_ACTION,
    "track_progress": SessionKind.TRACK_PROGRESS,
}


@dataclass(frozen=True)
class Thresholds:
    safety: float = 0.75
    intent: float = 0.6
    interrupt: float = 0.65
    topic_depth: float = 0.6
    tool_intent: float = 0.7
    deep_reasons: float = 0.65
    pending_resolution: float = 0.55
    safety_resolution: float = 0.6

    @classmethod
    def from_settings(cls, settings: Settings) -> Thresholds:
        return cls(
            safety=settings.safety_threshold,
            intent=settings.intent_threshold,
            interrupt=settings.interrupt_threshold,
            topic_depth=settings.topic_depth_threshold,
            tool_intent=settings.tool_intent_threshold,
            deep_reasons=settings.deep_reasons_threshold,
            pending_resolution=settings.pending_resolution_threshold,
            safety_resolution=settings.safety_resolution_threshold,
        )


@dataclass
class IntentCandidate:
    """One mother-signal contender for this turn."""

    name: str
    kind: SessionKind
    confidence: float
    target: str | None = None
    meta: dict = field(default_factory=dict)

    @property
    def family(self) -> str:
        return spec_for(self.kind).family

    @property
    def deferred_kind(self) -> DeferredKind | None:
        return spec_for(self.kind).deferred_kind

    @property
    def rank(self) -> int:
        return MOTHER_PRIORITY.index(self.name)


def collect_intents(
    signals: SignalBundle,
    thresholds: Thresholds,
) -> tuple[list[IntentCandidate], list[str]]:
    """Return (candidates sorted by priority, names of filtered weak signals)."""
    candidates: list[IntentCandidate] = []
    filtered: list[str] = []

    depth = signals.topic_depth
    if depth.value != "none":
        if depth.confidence >= thresholds.topic_depth:
            kind = SessionKind.TOPIC_LIGHT if depth.value == "light" else SessionKind.TOPIC_SERIOUS
            candidates.append(
                IntentCandidate(
                    "topic_exploration",
                    kind,
                    depth.confidence,
                    target=signals.interrupt.deferred_topic_formalized,
                    meta={"plan_focus": depth.plan_focus},
                )
            )
        else:
            filtered.append("topic_exploration")

    deep = signals.deep_reasons
    if deep.opportunity:
        if deep.confidence >= thresholds.deep_reasons:
            candidates.append(
                IntentCandidate(
                    "deep_reasons",
                    SessionKind.DEEP_REASONS,
                    deep.confidence,
                    target=deep.action_target,
                    meta={"action_target": deep.action_target} if deep.action_target else {},
                )
            )
        else:
            filtered.append("deep_reasons")

    for name, kind in _TOOL_SIGNALS.items():
        block = getattr(signals, name)
        if not block.detected:
            continue
        if block.confidence >= thresholds.tool_intent:
            candidates.append(
                IntentCandidate(
                    name,
                    kind,
                    block.confidence,
                    target=block.target_hint,
                    meta={"action_target": block.target_hint} if block.target_hint else {},
                )
            )
        else:
            filtered.append(name)

    # A confident primary intent can stand in for a tool block that missed its gate.
    primary = signals.user_intent_primary
    if (
        primary in _TOOL_SIGNALS
        and signals.user_intent_confidence >= thresholds.intent
        and not any(c.name == primary for c in candidates)
    ):
        candidates.append(IntentCandidate(primary, _TOOL_SIGNALS[primary], signals.user_intent_confidence))
        if primary in filtered:
            filtered.remove(primary)

    candidates.sort(key=lambda c: c.rank)
    return candidates, filtered
