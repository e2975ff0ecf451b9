"""Pydantic models for the orchestration state blob and the signal bundle.

The state models define the persisted per-user document. Every model
accepts and round-trips unknown fields so that layers which do not
understand a field never drop it.

The signal models define the contract with the external classifier.
Every field has a neutral default; a block that fails validation is
treated as "no signal".
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from switchboard.utils import utcnow

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid4().hex


class SessionKind(StrEnum):
    CREATE_ACTION = "create_action_flow"
    UPDATE_ACTION = "update_action_flow"
    BREAKDOWN_ACTION = "breakdown_action_flow"
    ACTIVATE_ACTION = "activate_action_flow"
    TRACK_PROGRESS = "track_progress_flow"
    TOPIC_LIGHT = "topic_light"
    TOPIC_SERIOUS = "topic_serious"
    DEEP_REASONS = "deep_reasons_exploration"
    SAFETY_FIREFIGHTER = "safety_firefighter_flow"
    SAFETY_SENTRY = "safety_sentry_flow"
    PROFILE_CONFIRMATION = "user_profile_confirmation"


class HandlerName(StrEnum):
    COMPANION = "companion"
    ARCHITECT = "architect"
    FIREFIGHTER = "firefighter"
    SENTRY = "sentry"


class SessionStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"


class DeferredKind(StrEnum):
    CREATE_ACTION = "create_action"
    UPDATE_ACTION = "update_action"
    BREAKDOWN_ACTION = "breakdown_action"
    ACTIVATE_ACTION = "activate_action"
    TRACK_PROGRESS = "track_progress"
    TOPIC_LIGHT = "topic_light"
    TOPIC_SERIOUS = "topic_serious"
    DEEP_REASONS = "deep_reasons"


class PauseReason(StrEnum):
    SENTRY = "sentry"
    FIREFIGHTER = "firefighter"


class ConfirmationType(StrEnum):
    DUAL_INTENT = "dual_intent"
    RELAUNCH_CONSENT = "relaunch_consent"
    PROFILE_FACT = "profile_fact"


# --- Persisted state ---


class _Persisted(BaseModel):
    model_config = ConfigDict(extra="allow")


class Session(_Persisted):
    """One unit of in-progress conversational work."""

    id: str = Field(default_factory=_new_id)
    kind: SessionKind
    owner: HandlerName
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)
    phase: str
    turn_count: int = 0
    meta: dict[str, Any] = Field(default_factory=dict)
    topic: str | None = None
    resume_brief: str | None = None


class QueuedIntent(_Persisted):
    """A "switch to handler X later" marker."""

    id: str = Field(default_factory=_new_id)
    requested_handler: HandlerName
    requested_at: datetime = Field(default_factory=utcnow)
    reason: str
    message_excerpt: str = ""


class TopicSummary(_Persisted):
    summary: str
    timestamp: datetime = Field(default_factory=utcnow)


class DeferredTopic(_Persisted):
    """A raised-but-postponed topic, enriched each time it is mentioned again."""

    id: str = Field(default_factory=_new_id)
    kind: DeferredKind
    target: str | None = None
    summaries: list[TopicSummary] = Field(default_factory=list)
    trigger_count: int = 1
    priority: int = 2  # lower tier is released first
    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime


class DeferredRegistry(_Persisted):
    topics: list[DeferredTopic] = Field(default_factory=list)
    paused_until: datetime | None = None
    last_processed_at: datetime | None = None


class PausedMachineState(_Persisted):
    """Single-slot snapshot of a session evicted by a safety interrupt."""

    kind: SessionKind
    session_id: str
    label: str = ""
    snapshot: dict[str, Any] | None = None
    phase: str | None = None
    turn_count: int = 0
    paused_at: datetime = Field(default_factory=utcnow)
    reason: PauseReason
    resume_context: str = ""


class PendingConfirmation(_Persisted):
    """A yes/no/unclear question awaiting exactly one answer."""

    id: str = Field(default_factory=_new_id)
    type: ConfirmationType
    owner: HandlerName
    created_at: datetime = Field(default_factory=utcnow)
    turn_created: int = 0
    reask_count: int = 0
    payload: dict[str, Any] = Field(default_factory=dict)


class SafetyHistory(_Persisted):
    last_sentry_at: datetime | None = None
    last_firefighter_at: datetime | None = None


class OrchestrationState(_Persisted):
    """The per-user, per-scope orchestration document."""

    stack: list[Session] = Field(default_factory=list)
    queue: list[QueuedIntent] = Field(default_factory=list)
    deferred: DeferredRegistry = Field(default_factory=DeferredRegistry)
    paused: PausedMachineState | None = None
    pending_confirmation: PendingConfirmation | None = None
    safety: SafetyHistory = Field(default_factory=SafetyHistory)
    turn_index: int = 0
    updated_at: datetime | None = None
    stack_updated_at: datetime | None = None

    @classmethod
    def from_blob(cls, raw: Any) -> OrchestrationState:
        """Load a stored document without ever failing the turn.

        Fields that fail validation are dropped (list fields item by item)
        and logged; unknown fields are kept as-is.
        """
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning("Orchestration state is not a mapping (%s), starting fresh", type(raw).__name__)
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError:
            logger.warning("Orchestration state failed validation, salvaging valid fields")

        salvaged: dict[str, Any] = {}
        for key, value in raw.items():
            if key not in cls.model_fields:
                salvaged[key] = value
                continue
            if isinstance(value, list):
                kept = [item for item in value if _field_accepts(key, [item])]
                if len(kept) != len(value):
                    logger.warning("Dropped %d corrupted entries from %s", len(value) - len(kept), key)
                salvaged[key] = kept
            elif _field_accepts(key, value):
                salvaged[key] = value
            else:
                logger.warning("Dropped corrupted state field %s", key)
        return cls.model_validate(salvaged)

    def to_blob(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    # Denormalized keys owned by individual handlers live in model_extra.

    def get_extra(self, key: str) -> Any:
        return (self.model_extra or {}).get(key)

    def set_extra(self, key: str, value: Any) -> None:
        setattr(self, key, value)

    def pop_extra(self, key: str) -> Any:
        if self.model_extra is None:
            return None
        return self.model_extra.pop(key, None)


def _field_accepts(key: str, value: Any) -> bool:
    try:
        OrchestrationState.model_validate({key: value})
    except ValidationError:
        return False
    return True


# --- Signal bundle ---

Confidence = Annotated[float, Field(ge=0.0, le=1.0)]


class _Signal(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SafetySignal(_Signal):
    level: Literal["none", "sentry", "firefighter"] = "none"
    confidence: Confidence = 0.0
    immediacy: Literal["acute", "non_acute", "unknown"] = "unknown"


class InterruptSignal(_Signal):
    kind: Literal["none", "explicit_stop", "bored", "switch_topic", "digression"] = "none"
    confidence: Confidence = 0.0
    deferred_topic_formalized: str | None = None


class TopicDepthSignal(_Signal):
    value: Literal["none", "need_support", "serious", "light"] = "none"
    confidence: Confidence = 0.0
    plan_focus: bool = False


class DeepReasonsSignal(_Signal):
    opportunity: bool = False
    action_mentioned: bool = False
    action_target: str | None = None
    confidence: Confidence = 0.0


UserResponse = Literal["none", "yes", "no", "modify", "unclear"]


class ToolIntentSignal(_Signal):
    """One block per tool-flow kind."""

    detected: bool = False
    confidence: Confidence = 0.0
    target_hint: str | None = None
    user_response: UserResponse = "none"


class SafetyResolutionSignal(_Signal):
    user_stabilizing: bool = False
    symptoms_still_present: bool = False
    external_help_mentioned: bool = False
    user_confirms_safe: bool = False
    escalate_to_sentry: bool = False
    confidence: Confidence = 0.0


class PendingResolutionSignal(_Signal):
    status: Literal["unrelated", "resolved", "unresolved"] = "unrelated"
    decision_code: str | None = None
    confidence: Confidence = 0.0


class ProfileFactSignal(_Signal):
    key: str | None = None
    value: str | None = None
    confidence: Confidence = 0.0


class SignalBundle(_Signal):
    """Structured per-turn signals produced by the classifier collaborator."""

    safety: SafetySignal = Field(default_factory=SafetySignal)
    user_intent_primary: str = "unknown"
    user_intent_confidence: Confidence = 0.0
    interrupt: InterruptSignal = Field(default_factory=InterruptSignal)
    topic_depth: TopicDepthSignal = Field(default_factory=TopicDepthSignal)
    deep_reasons: DeepReasonsSignal = Field(default_factory=DeepReasonsSignal)
    create_action: ToolIntentSignal = Field(default_factory=ToolIntentSignal)
    update_action: ToolIntentSignal = Field(default_factory=ToolIntentSignal)
    breakdown_action: ToolIntentSignal = Field(default_factory=ToolIntentSignal)
    activate_action: ToolIntentSignal = Field(default_factory=ToolIntentSignal)
    track_progress: ToolIntentSignal = Field(default_factory=ToolIntentSignal)
    safety_resolution: SafetyResolutionSignal = Field(default_factory=SafetyResolutionSignal)
    pending_resolution: PendingResolutionSignal = Field(default_factory=PendingResolutionSignal)
    profile_fact: ProfileFactSignal = Field(default_factory=ProfileFactSignal)

    @classmethod
    def parse_lenient(cls, raw: Any) -> SignalBundle:
        """Parse classifier output, replacing each malformed block with its default."""
        if isinstance(raw, SignalBundle):
            return raw
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning("Signal bundle is not a mapping (%s), treating as no signal", type(raw).__name__)
            return cls()
        clean: dict[str, Any] = {}
        for key, value in raw.items():
            if key not in cls.model_fields:
                continue
            try:
                cls.model_validate({key: value})
            except ValidationError:
                logger.warning("Ignoring malformed signal block %s", key)
                continue
            clean[key] = value
        return cls.model_validate(clean)

    def tool_signal(self, kind: DeferredKind) -> ToolIntentSignal | None:
        value = getattr(self, kind.value, None)
        return value if isinstance(value, ToolIntentSignal) else None
