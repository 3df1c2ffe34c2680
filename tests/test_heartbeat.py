"""
Tests for heartbeat.py - orchestration, preconditions, KEY=VALUE report
"""

import asyncio
from dataclasses import replace

import pytest

from core import heartbeat
from core.constants import BASE, DAY_MS
from core.errors import ConfigError, IdentityMissing, LockBusy, TokenNotDeployed
from core.heartbeat import HeartbeatReport, check_preconditions, format_report, run_heartbeat
from core.identity_store import Identity
from core.locking import advisory_lock

from conftest import ACTIVATED_AT, ETH, TOKEN, WALLET, FakeGateway

NOW = ACTIVATED_AT + 2 * DAY_MS + 1

REPORT_KEYS = [
    "HEARTBEAT_OK",
    "claimed_collect_tx",
    "claimed_weth_tx",
    "claimed_token_tx",
    "buyback_tx",
    "burn_tx",
    "buyback_spent_eth",
    "buyback_bought_token",
    "final_unclaimed_weth",
    "final_unclaimed_token",
]


def _parse(text: str) -> dict:
    return dict(line.split("=", 1) for line in text.strip().splitlines())


class TestPreconditions:

    def test_missing_identity(self, empty_store, config):
        with pytest.raises(IdentityMissing):
            check_preconditions(empty_store, config)

    def test_token_not_deployed(self, store, config):
        identity = store.get_identity()
        identity.token_address = None
        store.save_identity(identity)
        with pytest.raises(TokenNotDeployed):
            check_preconditions(store, config)

    def test_lockers_required(self, store, config):
        with pytest.raises(ConfigError):
            check_preconditions(store, replace(config, fee_locker_address=""))


class TestRunHeartbeat:

    def test_full_cycle(self, gateway, store, config):
        gateway.set_fees(BASE.WETH, 2 * 10**16)
        gateway.set_token_balance(BASE.WETH, WALLET, ETH)
        gateway.swap_buy_amount = 1_000 * ETH

        report = asyncio.run(run_heartbeat(config, store, gateway, now=NOW))

        assert gateway.ops() == ["collect", "claim", "swap", "transfer"]
        assert report.day == 3
        assert report.claim.claim_weth_tx is not None
        assert report.buyback.spend == 5 * 10**16
        assert report.final_unclaimed_weth == 0

        actions = [r.action for r in reversed(store.recent_audit(10))]
        assert actions == ["heartbeat_proof", "fees_claimed", "buyback", "burn", "heartbeat_proof"]
        rows = list(reversed(store.recent_audit(10)))
        assert rows[0].details == "Day 3, normal, cycle start"
        assert rows[-1].details == "Day 3, normal, cycle complete"

    def test_quiet_cycle_only_audits_proof(self, gateway, store, config):
        report = asyncio.run(run_heartbeat(config, store, gateway, now=NOW))

        assert gateway.writes == []
        assert [r.action for r in store.recent_audit(10)] == ["heartbeat_proof", "heartbeat_proof"]
        lines = _parse(format_report(report))
        assert lines["HEARTBEAT_OK"] == "YES"
        assert lines["buyback_tx"] == "NONE"
        assert lines["buyback_spent_eth"] == "0"

    def test_day_defaults_to_one_without_activation(self, gateway, config, empty_store):
        empty_store.save_identity(Identity(name="c", address=WALLET, token_address=TOKEN))

        report = asyncio.run(run_heartbeat(config, empty_store, gateway, now=NOW))

        assert report.day == 1
        assert empty_store.recent_audit(1)[0].details == "Day 1, normal, cycle complete"

    def test_uses_survival_tier(self, gateway, store, config):
        survival = store.get_survival()
        survival.tier = "critical"
        store.save_survival(survival)

        asyncio.run(run_heartbeat(config, store, gateway, now=NOW))

        assert store.recent_audit(1)[0].details == "Day 3, critical, cycle complete"

    def test_concurrent_cycle_refused(self, gateway, store, config):
        with advisory_lock(config.lock_dir / "heartbeat.lock"):
            with pytest.raises(LockBusy):
                asyncio.run(run_heartbeat(config, store, gateway, now=NOW))
        assert store.count_audit() == 0

    def test_buyback_failure_keeps_claim_row(self, gateway, store, config):
        gateway.set_fees(BASE.WETH, 2 * 10**16)
        gateway.set_token_balance(BASE.WETH, WALLET, ETH)
        gateway.swap_failures = 2

        with pytest.raises(Exception):
            asyncio.run(run_heartbeat(config, store, gateway, now=NOW))

        actions = [r.action for r in reversed(store.recent_audit(10))]
        assert actions == ["heartbeat_proof", "fees_claimed"]


class TestReport:

    def test_line_order(self):
        lines = format_report(HeartbeatReport()).splitlines()
        assert [line.split("=", 1)[0] for line in lines] == REPORT_KEYS

    def test_decimals_used_for_token_figures(self):
        report = HeartbeatReport(token_decimals=6, final_unclaimed_token=2_500_000)
        assert _parse(format_report(report))["final_unclaimed_token"] == "2.5"


class TestHeartbeatMain:

    @pytest.fixture
    def patched(self, monkeypatch, config):
        fake = FakeGateway()
        monkeypatch.setattr(heartbeat, "build_gateway", lambda cfg, key: fake)
        return replace(config, private_key_override="0x" + "ab" * 32), fake

    def test_success_prints_single_report(self, patched, store, capsys):
        config, fake = patched
        fake.set_fees(BASE.WETH, 2 * 10**16)

        code = heartbeat.heartbeat_main(config)

        out, err = capsys.readouterr()
        assert code == 0
        assert out.count("HEARTBEAT_OK=") == 1
        assert out.splitlines()[0] == "HEARTBEAT_OK=YES"
        assert [line.split("=", 1)[0] for line in out.strip().splitlines()] == REPORT_KEYS
        assert "HEARTBEAT_OK" not in err

    def test_token_not_deployed_exits_without_audit(self, patched, store, capsys):
        config, fake = patched
        identity = store.get_identity()
        identity.token_address = None
        store.save_identity(identity)

        code = heartbeat.heartbeat_main(config)

        out, err = capsys.readouterr()
        assert code == 1
        assert out == ""
        assert "HEARTBEAT_OK=NO" in err.splitlines()
        assert "No token deployed" in err
        assert store.count_audit() == 0
        assert fake.writes == []

    def test_missing_private_key_is_fatal(self, store, config, capsys):
        code = heartbeat.heartbeat_main(config)

        _, err = capsys.readouterr()
        assert code == 1
        assert err.count("HEARTBEAT_OK=NO") == 1
        assert store.count_audit() == 0

    def test_swap_failure_reports_no(self, patched, store, capsys):
        config, fake = patched
        fake.set_token_balance(BASE.WETH, WALLET, ETH)
        fake.swap_failures = 2

        code = heartbeat.heartbeat_main(config)

        out, err = capsys.readouterr()
        assert code == 1
        assert "HEARTBEAT_OK" not in out
        assert err.count("HEARTBEAT_OK=NO") == 1
