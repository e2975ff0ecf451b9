"""Routing audit records.

The field names of an audit record are a stable external contract. The
builder serializes only whitelisted fields and bounds every value
(depth, string length, list length) so records stay small.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from switchboard.orchestration.routing import RoutingDecision
from switchboard.orchestration.schemas import Session

AUDIT_FIELDS = (
    "target",
    "reason",
    "honored_signals",
    "filtered_signals",
    "active_kind_before",
    "active_phase_before",
    "active_kind_after",
    "active_phase_after",
    "effects",
    "turn_index",
    "swept",
)

MAX_DEPTH = 4
MAX_STRING = 200
MAX_ITEMS = 10


def bounded(value: Any, depth: int = 0) -> Any:
    """Copy ``value`` into plain JSON types within the size bounds."""
    if isinstance(value, Enum):
        value = value.value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return value if len(value) <= MAX_STRING else value[: MAX_STRING - 1] + "…"
    if depth >= MAX_DEPTH:
        return "…"
    if isinstance(value, dict):
        items = list(value.items())[:MAX_ITEMS]
        return {str(k): bounded(v, depth + 1) for k, v in items}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [bounded(v, depth + 1) for v in list(value)[:MAX_ITEMS]]
    return bounded(str(value), depth)


def build_record(
    decision: RoutingDecision,
    before: Session | None,
    after: Session | None,
    turn_index: int,
    swept: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the audit record for one routing decision."""
    raw = {
        "target": decision.target,
        "reason": decision.reason,
        "honored_signals": decision.honored,
        "filtered_signals": decision.filtered,
        "active_kind_before": before.kind if before else None,
        "active_phase_before": before.phase if before else None,
        "active_kind_after": after.kind if after else None,
        "active_phase_after": after.phase if after else None,
        "effects": [e.as_dict() for e in decision.effects],
        "turn_index": turn_index,
        "swept": {k: v for k, v in (swept or {}).items() if v},
    }
    return {name: bounded(raw[name]) for name in AUDIT_FIELDS}
