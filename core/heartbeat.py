"""
Heartbeat Orchestrator - one claim -> buyback -> burn cycle.

    preconditions (identity, token, lockers)
    -> heartbeat.lock (non-blocking)
    -> audit "Day N, <tier>, cycle start"
    -> claim_cycle -> buyback_cycle
    -> re-read unclaimed fees
    -> audit "Day N, <tier>, cycle complete"
    -> KEY=VALUE report on stdout

Stdout carries only the report. External schedulers parse it and treat a
non-zero exit as "retry later"; the first line is always HEARTBEAT_OK=YES|NO.
"""

import sys
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .buyback import BuybackResult, buyback_cycle
from .chain import ChainGateway, build_gateway
from .chain_reader import TreasuryReader
from .config import TreasuryConfig
from .constants import BASE, PROJECT
from .errors import ConfigError, IdentityMissing, TokenNotDeployed
from .fee_claimer import ClaimResult, claim_cycle
from .identity_store import Identity, IdentityStore, day_counter, now_ms
from .locking import advisory_lock
from .units import format_ether, format_units

logger = logging.getLogger("cxau.heartbeat")


@dataclass
class HeartbeatReport:
    claim: ClaimResult = field(default_factory=ClaimResult)
    buyback: BuybackResult = field(default_factory=BuybackResult)
    token_decimals: int = BASE.DEFAULT_TOKEN_DECIMALS
    final_unclaimed_weth: int = 0
    final_unclaimed_token: int = 0
    day: int = 1

    def lines(self) -> list[str]:
        return [
            "HEARTBEAT_OK=YES",
            f"claimed_collect_tx={self.claim.collect_tx or 'NONE'}",
            f"claimed_weth_tx={self.claim.claim_weth_tx or 'NONE'}",
            f"claimed_token_tx={self.claim.claim_token_tx or 'NONE'}",
            f"buyback_tx={self.buyback.buy_tx or 'NONE'}",
            f"burn_tx={self.buyback.burn_tx or 'NONE'}",
            f"buyback_spent_eth={format_ether(self.buyback.spend)}",
            f"buyback_bought_token={format_units(self.buyback.buy_amount, self.token_decimals)}",
            f"final_unclaimed_weth={format_ether(self.final_unclaimed_weth)}",
            f"final_unclaimed_token={format_units(self.final_unclaimed_token, self.token_decimals)}",
        ]


def format_report(report: HeartbeatReport) -> str:
    return "\n".join(report.lines())


def check_preconditions(store: IdentityStore, config: TreasuryConfig) -> Identity:
    """Fatal checks. Nothing has been written when one of these raises."""
    identity = store.get_identity()
    if identity is None:
        raise IdentityMissing("No identity in DB")
    if not identity.token_address:
        raise TokenNotDeployed("No token deployed in DB")
    if not config.fee_locker_address or not config.lp_locker_address:
        raise ConfigError("CXAU_FEE_LOCKER_ADDRESS and CXAU_LP_LOCKER_ADDRESS must be set")
    return identity


async def run_heartbeat(config: TreasuryConfig, store: IdentityStore, gateway: ChainGateway,
                        identity: Optional[Identity] = None,
                        now: Optional[int] = None) -> HeartbeatReport:
    """
    Run one cycle. Expected no-ops (below threshold, nothing to spend) are
    not errors; anything raised from here is fatal for this cycle only.
    """
    identity = identity or check_preconditions(store, config)
    now = now if now is not None else now_ms()

    wallet = identity.address
    token = identity.token_address
    symbol = identity.token_symbol or PROJECT.DEFAULT_SYMBOL

    activation = store.get_activation()
    survival = store.get_survival()
    day = day_counter(activation.activated_at if activation else None, now) or 1
    tier = survival.tier if survival else "normal"

    with advisory_lock(Path(config.lock_dir) / "heartbeat.lock", blocking=False):
        store.add_audit("heartbeat_proof", f"Day {day}, {tier}, cycle start")

        reader = TreasuryReader(gateway)
        token_decimals = await reader.token_decimals(token)

        claim = await claim_cycle(gateway, store, config, wallet, token, token_decimals)
        buyback = await buyback_cycle(gateway, store, config, wallet, token, symbol, token_decimals)

        final_weth, final_token = await asyncio.gather(
            reader.unclaimed_fee(wallet, BASE.WETH),
            reader.unclaimed_fee(wallet, token),
        )

        store.add_audit("heartbeat_proof", f"Day {day}, {tier}, cycle complete")

    return HeartbeatReport(
        claim=claim,
        buyback=buyback,
        token_decimals=token_decimals,
        final_unclaimed_weth=final_weth.value,
        final_unclaimed_token=final_token.value,
        day=day,
    )


def heartbeat_main(config: Optional[TreasuryConfig] = None) -> int:
    """Process entry for `main.py heartbeat`. Returns the exit code."""
    try:
        config = config or TreasuryConfig.from_env()
        with IdentityStore(config.db_path) as store:
            identity = check_preconditions(store, config)
            private_key = config.private_key_override or identity.private_key
            if not private_key:
                raise ConfigError("no private key for the treasury wallet")
            gateway = build_gateway(config, private_key)
            logger.info(f"Heartbeat cycle for {identity.name} | token={identity.token_address}")
            report = asyncio.run(run_heartbeat(config, store, gateway, identity=identity))
            logger.info(f"Gateway status: {gateway.get_status()}")
    except Exception as e:
        logger.error(f"Heartbeat failed: {type(e).__name__}: {e}")
        print("HEARTBEAT_OK=NO", file=sys.stderr)
        print(str(e) or type(e).__name__, file=sys.stderr)
        return 1

    print(format_report(report), flush=True)
    return 0
