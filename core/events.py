"""
Audit row -> public event mapping.

classify_event() walks EVENT_RULES in order and returns the first match.
The order is part of the feed's contract: "deployed, claim pending" must stay
a deploy event, so reordering rules changes published history.
"""

from enum import Enum
from typing import Callable, Iterable

from .constants import CLAWNCH_FEE_EVENT, CLAWNCH_FEE_TX_HASH, tx_url
from .identity_store import AuditLogEntry
from .units import iso_from_ms


class EventType(str, Enum):
    ACTIVATION = "activation"
    DEPLOY = "deploy"
    FEES_CLAIMED = "fees_claimed"
    MILESTONE = "milestone"
    HEARTBEAT_PROOF = "heartbeat_proof"
    BUYBACK = "buyback"
    BURN = "burn"
    LOG = "log"
    CLAWNCH_FEE = "clawnch_fee"


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda hay: any(n in hay for n in needles)


EVENT_RULES: tuple[tuple[Callable[[str], bool], EventType], ...] = (
    (_contains("activation", "burned 1,000,000"), EventType.ACTIVATION),
    (_contains("deploy"), EventType.DEPLOY),
    (_contains("claim"), EventType.FEES_CLAIMED),
    (_contains("milestone"), EventType.MILESTONE),
    (_contains("run_", "heartbeat"), EventType.HEARTBEAT_PROOF),
    (_contains("buyback"), EventType.BUYBACK),
    (_contains("burn"), EventType.BURN),
)


def classify_event(action: str, details: str) -> EventType:
    hay = f"{action or ''} {details or ''}".lower()
    for matches, event_type in EVENT_RULES:
        if matches(hay):
            return event_type
    return EventType.LOG


def audit_to_event(row: AuditLogEntry) -> dict:
    return {
        "id": row.id,
        "type": classify_event(row.action, row.details).value,
        "action": row.action,
        "message": row.details,
        "timestamp": row.timestamp,
        "isoTime": iso_from_ms(row.timestamp),
        "txHash": row.tx_hash,
        "txUrl": tx_url(row.tx_hash) if row.tx_hash else None,
    }


def build_events(rows_newest_first: Iterable[AuditLogEntry]) -> list[dict]:
    """Audit rows (as read, newest first) -> events oldest first, seed event ensured."""
    events = [audit_to_event(row) for row in reversed(list(rows_newest_first))]
    return ensure_seed_event(events)


def ensure_seed_event(events: list[dict]) -> list[dict]:
    """Append the launch fee-share event unless some event already carries its tx."""
    if any((ev.get("txHash") or "").lower() == CLAWNCH_FEE_TX_HASH for ev in events):
        return events
    ids = [int(ev.get("id") or 0) for ev in events]
    next_id = max(ids) + 1 if ids else 1
    events.append({"id": next_id, **CLAWNCH_FEE_EVENT})
    return events
