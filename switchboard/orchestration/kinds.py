"""Per-kind session rules and typed metadata payloads.

Each SessionKind has a KindSpec: family, owning handler, valid phases
(first one is the default), time-to-live, the typed meta model used for
pause/resume snapshots and, where it exists, the deferred-topic kind it
maps to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Literal, Protocol, Self, runtime_checkable

from pydantic import BaseModel, ConfigDict, ValidationError

from switchboard.orchestration.schemas import DeferredKind, HandlerName, SessionKind

logger = logging.getLogger(__name__)

Family = Literal["tool", "topic", "deep", "safety", "profile"]

# Blob key holding the deep-reasons handler's own state
DEEP_REASONS_STATE_KEY = "deep_reasons_state"


@runtime_checkable
class Snapshotable(Protocol):
    """Anything pause/resume can capture and rebuild."""

    def snapshot(self) -> dict[str, Any]: ...

    @classmethod
    def restore(cls, data: dict[str, Any] | None) -> Self: ...


class _Meta(BaseModel):
    model_config = ConfigDict(extra="allow")

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def restore(cls, data: dict[str, Any] | None) -> Self:
        if not data:
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError:
            logger.warning("Discarding unreadable %s snapshot", cls.__name__)
            return cls()


class ToolFlowMeta(_Meta):
    action_target: str | None = None
    candidate: dict[str, Any] | None = None
    status_hint: str | None = None


class TopicMeta(_Meta):
    topic: str | None = None
    engagement: Literal["high", "medium", "low"] | None = None
    plan_focus: bool = False


class DeepReasonsMeta(_Meta):
    action_target: str | None = None
    detected_pattern: str | None = None


class SafetyMeta(_Meta):
    tier: Literal["sentry", "firefighter"] | None = None
    immediacy: str | None = None
    stabilizing_turns: int = 0


class ProfileConfirmMeta(_Meta):
    fact_key: str | None = None
    fact_value: str | None = None
    remaining: int = 0


@dataclass(frozen=True)
class KindSpec:
    kind: SessionKind
    family: Family
    owner: HandlerName
    phases: tuple[str, ...]
    ttl: timedelta
    meta_model: type[_Meta]
    deferred_kind: DeferredKind | None = None
    denormalized_key: str | None = None

    @property
    def default_phase(self) -> str:
        return self.phases[0]

    def normalize_phase(self, phase: str | None) -> str:
        """Return phase if valid for this kind, else the default phase."""
        if phase in self.phases:
            return phase
        if phase is not None:
            logger.warning(
                "Invalid phase %r for %s, falling back to %s",
                phase,
                self.kind.value,
                self.default_phase,
            )
        return self.default_phase

    def parse_meta(self, meta: dict[str, Any] | None) -> _Meta:
        return self.meta_model.restore(meta)


_TOOL_CONFIRM = ("previewing", "awaiting_confirm")
_TOPIC_PHASES = ("opening", "exploring", "converging", "closing")

KIND_SPECS: dict[SessionKind, KindSpec] = {
    spec.kind: spec
    for spec in (
        KindSpec(
            SessionKind.CREATE_ACTION, "tool", HandlerName.ARCHITECT,
            ("exploring", *_TOOL_CONFIRM), timedelta(minutes=15), ToolFlowMeta,
            DeferredKind.CREATE_ACTION,
        ),
        KindSpec(
            SessionKind.UPDATE_ACTION, "tool", HandlerName.ARCHITECT,
            ("identifying", *_TOOL_CONFIRM), timedelta(minutes=15), ToolFlowMeta,
            DeferredKind.UPDATE_ACTION,
        ),
        KindSpec(
            SessionKind.BREAKDOWN_ACTION, "tool", HandlerName.ARCHITECT,
            ("clarifying_blocker", "proposing_step", "awaiting_confirm"), timedelta(minutes=15), ToolFlowMeta,
            DeferredKind.BREAKDOWN_ACTION,
        ),
        KindSpec(
            SessionKind.ACTIVATE_ACTION, "tool", HandlerName.ARCHITECT,
            ("exploring", "confirming"), timedelta(minutes=10), ToolFlowMeta,
            DeferredKind.ACTIVATE_ACTION,
        ),
        KindSpec(
            SessionKind.TRACK_PROGRESS, "tool", HandlerName.ARCHITECT,
            ("collecting", "confirming"), timedelta(minutes=10), ToolFlowMeta,
            DeferredKind.TRACK_PROGRESS,
        ),
        KindSpec(
            SessionKind.TOPIC_LIGHT, "topic", HandlerName.COMPANION,
            _TOPIC_PHASES, timedelta(minutes=30), TopicMeta,
            DeferredKind.TOPIC_LIGHT,
        ),
        KindSpec(
            SessionKind.TOPIC_SERIOUS, "topic", HandlerName.ARCHITECT,
            _TOPIC_PHASES, timedelta(hours=2), TopicMeta,
            DeferredKind.TOPIC_SERIOUS,
        ),
        KindSpec(
            SessionKind.DEEP_REASONS, "deep", HandlerName.ARCHITECT,
            ("clarify", "re_consent", "hypotheses", "resonance", "intervention", "closing"),
            timedelta(hours=2), DeepReasonsMeta,
            DeferredKind.DEEP_REASONS, denormalized_key=DEEP_REASONS_STATE_KEY,
        ),
        KindSpec(
            SessionKind.SAFETY_FIREFIGHTER, "safety", HandlerName.FIREFIGHTER,
            ("acute", "stabilizing", "confirming", "resolved"), timedelta(minutes=20), SafetyMeta,
        ),
        KindSpec(
            SessionKind.SAFETY_SENTRY, "safety", HandlerName.SENTRY,
            ("acute", "confirming", "resolved"), timedelta(minutes=30), SafetyMeta,
        ),
        KindSpec(
            SessionKind.PROFILE_CONFIRMATION, "profile", HandlerName.COMPANION,
            ("presenting", "awaiting_confirm", "processing", "completed"), timedelta(minutes=10),
            ProfileConfirmMeta,
        ),
    )
}

_BY_DEFERRED = {spec.deferred_kind: spec.kind for spec in KIND_SPECS.values() if spec.deferred_kind}

# Release order for deferred topics (lower tier first)
DEFERRED_PRIORITY: dict[DeferredKind, int] = {
    DeferredKind.DEEP_REASONS: 1,
    DeferredKind.TOPIC_SERIOUS: 1,
    DeferredKind.BREAKDOWN_ACTION: 2,
    DeferredKind.CREATE_ACTION: 2,
    DeferredKind.UPDATE_ACTION: 2,
    DeferredKind.ACTIVATE_ACTION: 2,
    DeferredKind.TRACK_PROGRESS: 2,
    DeferredKind.TOPIC_LIGHT: 3,
}

TOOL_DEFERRED_KINDS = frozenset(
    spec.deferred_kind for spec in KIND_SPECS.values() if spec.family == "tool" and spec.deferred_kind
)


def spec_for(kind: SessionKind | str) -> KindSpec:
    return KIND_SPECS[SessionKind(kind)]


def is_safety(kind: SessionKind | str) -> bool:
    return spec_for(kind).family == "safety"


def session_kind_for(deferred_kind: DeferredKind | str) -> SessionKind:
    return _BY_DEFERRED[DeferredKind(deferred_kind)]


def owner_for(kind: SessionKind | str) -> HandlerName:
    return spec_for(kind).owner


def ttl_for(kind: SessionKind | str, overrides: dict[str, int] | None = None) -> timedelta:
    """TTL for a kind, honoring per-kind overrides (minutes) from settings."""
    kind = SessionKind(kind)
    if overrides and kind.value in overrides:
        return timedelta(minutes=overrides[kind.value])
    return spec_for(kind).ttl
