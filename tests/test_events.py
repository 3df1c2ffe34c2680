"""
Tests for events.py - ordered classification and the seed event
"""

import pytest

from core.constants import CLAWNCH_FEE_TX_HASH
from core.events import EVENT_RULES, EventType, build_events, classify_event, ensure_seed_event
from core.identity_store import AuditLogEntry


class TestClassifyEvent:

    @pytest.mark.parametrize("action,details,expected", [
        ("activation", "Agent activated", EventType.ACTIVATION),
        ("log", "Burned 1,000,000 $CXAU at launch", EventType.ACTIVATION),
        ("deploy", "Token deployed", EventType.DEPLOY),
        ("fees_claimed", "heartbeat: claim check, weth=0.02 token=0", EventType.FEES_CLAIMED),
        ("milestone", "100 holders", EventType.MILESTONE),
        ("run_cycle", "", EventType.HEARTBEAT_PROOF),
        ("heartbeat_proof", "Day 3, normal, cycle start", EventType.HEARTBEAT_PROOF),
        ("burn", "Burned 500 $CXAU", EventType.BURN),
        ("note", "something else", EventType.LOG),
    ])
    def test_rules(self, action, details, expected):
        assert classify_event(action, details) == expected

    def test_deploy_wins_over_claim(self):
        assert classify_event("log", "deployed, claim pending") == EventType.DEPLOY

    def test_heartbeat_wins_over_buyback(self):
        # "heartbeat: Bought ..." rows are filed under heartbeat_proof
        assert classify_event("buyback", "heartbeat: Bought 1 $CXAU for 0.05 ETH") == EventType.HEARTBEAT_PROOF

    def test_buyback_wins_over_burn(self):
        assert classify_event("buyback", "buyback and burn") == EventType.BUYBACK

    def test_case_insensitive(self):
        assert classify_event("DEPLOY", "") == EventType.DEPLOY

    def test_none_inputs(self):
        assert classify_event(None, None) == EventType.LOG

    def test_deterministic(self):
        pairs = [("a", "claim"), ("deploy", "claim"), ("x", "y")]
        assert [classify_event(*p) for p in pairs] == [classify_event(*p) for p in pairs]

    def test_rule_order(self):
        assert [event_type for _, event_type in EVENT_RULES] == [
            EventType.ACTIVATION,
            EventType.DEPLOY,
            EventType.FEES_CLAIMED,
            EventType.MILESTONE,
            EventType.HEARTBEAT_PROOF,
            EventType.BUYBACK,
            EventType.BURN,
        ]


def _row(id, action="log", details="", tx_hash=None, timestamp=1771500000000):
    return AuditLogEntry(id=id, timestamp=timestamp, action=action, details=details, tx_hash=tx_hash)


class TestBuildEvents:

    def test_oldest_first_with_seed_appended(self):
        rows = [_row(3, "burn", "Burned 1 $CXAU", "0xbb"), _row(2), _row(1)]

        events = build_events(rows)

        assert [e["id"] for e in events] == [1, 2, 3, 4]
        assert events[2]["type"] == "burn"
        assert events[2]["txUrl"] == "https://basescan.org/tx/0xbb"
        assert events[0]["txUrl"] is None
        assert events[3]["type"] == "clawnch_fee"
        assert events[3]["txHash"] == CLAWNCH_FEE_TX_HASH

    def test_event_shape(self):
        event = build_events([_row(7, "deploy", "Token deployed", timestamp=1771446000000)])[0]
        assert event == {
            "id": 7,
            "type": "deploy",
            "action": "deploy",
            "message": "Token deployed",
            "timestamp": 1771446000000,
            "isoTime": "2026-02-18T20:20:00.000Z",
            "txHash": None,
            "txUrl": None,
        }

    def test_empty_log_gets_seed_with_id_one(self):
        events = build_events([])
        assert len(events) == 1
        assert events[0]["id"] == 1
        assert events[0]["action"] == "clawnch_fee_20_percent"


class TestSeedEvent:

    def test_not_duplicated_when_row_carries_hash(self):
        rows = [_row(5, "log", "fee share", CLAWNCH_FEE_TX_HASH.upper().replace("0X", "0x"))]
        events = build_events(rows)
        assert len(events) == 1

    def test_idempotent(self):
        once = ensure_seed_event(build_events([_row(1)]))
        twice = ensure_seed_event(ensure_seed_event(once))
        seeds = [e for e in twice if e.get("txHash") == CLAWNCH_FEE_TX_HASH]
        assert len(seeds) == 1
        assert len(twice) == 2
