"""Pending confirmations: one structured yes/no/unclear question at a time.

While a confirmation is pending its owner keeps the turn. The answer is
read from the pending-resolution signal; a decision code that is not
valid for the confirmation type counts as unclear. Unclear answers get
one re-ask, then the question is dropped.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from switchboard.orchestration.schemas import (
    ConfirmationType,
    HandlerName,
    OrchestrationState,
    PendingConfirmation,
    PendingResolutionSignal,
)
from switchboard.utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

CONFIRMATION_TTL = timedelta(minutes=5)
CONFIRMATION_TURNS = 2
MAX_REASKS = 1


class Outcome(StrEnum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REASK = "reask"
    DROPPED = "dropped"
    CONFIRM_BOTH = "confirm_both"
    CONFIRM_REVERSED = "confirm_reversed"
    ONLY_FIRST = "only_first"
    ONLY_SECOND = "only_second"


_CODES: dict[ConfirmationType, dict[str, Outcome]] = {
    ConfirmationType.DUAL_INTENT: {
        "confirm_both": Outcome.CONFIRM_BOTH,
        "confirm_reversed": Outcome.CONFIRM_REVERSED,
        "only_first": Outcome.ONLY_FIRST,
        "only_second": Outcome.ONLY_SECOND,
        "decline_all": Outcome.DECLINED,
    },
    ConfirmationType.RELAUNCH_CONSENT: {"accept": Outcome.ACCEPTED, "decline": Outcome.DECLINED},
    ConfirmationType.PROFILE_FACT: {"confirm": Outcome.ACCEPTED, "reject": Outcome.DECLINED},
}

TERMINAL = frozenset(o for o in Outcome if o is not Outcome.REASK)


def valid_codes(kind: ConfirmationType) -> set[str]:
    return set(_CODES[kind])


def open_confirmation(
    state: OrchestrationState,
    kind: ConfirmationType | str,
    owner: HandlerName | str,
    payload: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> PendingConfirmation:
    """Ask a new question, replacing any previous one."""
    if state.pending_confirmation is not None:
        logger.info("Replacing pending %s confirmation", state.pending_confirmation.type.value)
    pending = PendingConfirmation(
        type=ConfirmationType(kind),
        owner=HandlerName(owner),
        created_at=now or utcnow(),
        turn_created=state.turn_index,
        payload=dict(payload or {}),
    )
    state.pending_confirmation = pending
    return pending


def is_expired(
    pending: PendingConfirmation,
    turn_index: int,
    now: datetime | None = None,
    *,
    ttl: timedelta = CONFIRMATION_TTL,
    max_turns: int = CONFIRMATION_TURNS,
) -> bool:
    now = now or utcnow()
    if now - ensure_aware(pending.created_at) > ttl:
        return True
    return turn_index - pending.turn_created > max_turns


def interpret(
    pending: PendingConfirmation,
    signal: PendingResolutionSignal,
    threshold: float = 0.55,
) -> Outcome:
    """Map this turn's resolution signal to an outcome for ``pending``."""
    if signal.status == "resolved" and signal.confidence >= threshold:
        code = (signal.decision_code or "").strip().lower()
        outcome = _CODES[pending.type].get(code)
        if outcome is not None:
            return outcome
        logger.warning("Decision code %r is not valid for %s", code, pending.type.value)
    return Outcome.REASK if pending.reask_count < MAX_REASKS else Outcome.DROPPED


def resolve(
    state: OrchestrationState,
    signal: PendingResolutionSignal,
    threshold: float = 0.55,
) -> tuple[PendingConfirmation | None, Outcome | None]:
    """Interpret the answer and update the slot.

    Re-asks keep the confirmation (with its counter bumped); every other
    outcome clears it. Returns (confirmation, outcome).
    """
    pending = state.pending_confirmation
    if pending is None:
        return None, None
    outcome = interpret(pending, signal, threshold)
    if outcome is Outcome.REASK:
        pending.reask_count += 1
        pending.turn_created = state.turn_index
    else:
        state.pending_confirmation = None
    logger.info("Confirmation %s -> %s", pending.type.value, outcome.value)
    return pending, outcome
