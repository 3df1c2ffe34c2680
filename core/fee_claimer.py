"""
Fee Claimer - collect + claim protocol fees.

    1. Read unclaimed WETH and token fees
    2. Below threshold (WETH) and no token fees -> no-op, zero writes
    3. collectRewards once, wait for receipt
    4. If collect succeeded: claim WETH if > 0, claim token if > 0
    5. One fees_claimed audit row for the cycle

A reverted or timed-out receipt leaves its hash as None. Nothing here
raises for an expected failure; the orchestrator always moves on.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .chain import ChainGateway
from .chain_reader import TreasuryReader
from .config import TreasuryConfig
from .constants import BASE
from .identity_store import IdentityStore
from .units import format_ether, format_units

logger = logging.getLogger("cxau.claimer")


@dataclass
class ClaimResult:
    collect_tx: Optional[str] = None
    claim_weth_tx: Optional[str] = None
    claim_token_tx: Optional[str] = None


async def _claim_if_available(gateway: ChainGateway, reader: TreasuryReader, wallet: str,
                              asset: str, label: str) -> Optional[str]:
    available = (await reader.unclaimed_fee(wallet, asset)).value
    if available <= 0:
        logger.info(f"No {label} fees to claim after collect")
        return None
    result = await gateway.claim_fees(wallet, asset)
    if not result.success:
        logger.warning(f"{label} claim did not land: {result.error}")
        return None
    return result.tx_hash


async def claim_cycle(gateway: ChainGateway, store: IdentityStore, config: TreasuryConfig,
                      wallet: str, token: str, token_decimals: int) -> ClaimResult:
    reader = TreasuryReader(gateway)
    unclaimed_weth = (await reader.unclaimed_fee(wallet, BASE.WETH)).value
    unclaimed_token = (await reader.unclaimed_fee(wallet, token)).value

    # Claiming costs gas; small WETH balances stay in the locker
    if unclaimed_weth < config.claim_threshold_wei and unclaimed_token == 0:
        logger.info(
            f"Claim skipped: weth={format_ether(unclaimed_weth)} "
            f"< threshold {format_ether(config.claim_threshold_wei)}, token=0"
        )
        return ClaimResult()

    collect = await gateway.collect_rewards(token)
    result = ClaimResult()

    if collect.success:
        result.collect_tx = collect.tx_hash
        result.claim_weth_tx = await _claim_if_available(gateway, reader, wallet, BASE.WETH, "WETH")
        result.claim_token_tx = await _claim_if_available(gateway, reader, wallet, token, "token")
    else:
        logger.warning(f"collectRewards did not land, skipping claims: {collect.error}")

    store.add_audit(
        "fees_claimed",
        f"heartbeat: claim check, weth={format_ether(unclaimed_weth)} "
        f"token={format_units(unclaimed_token, token_decimals)}",
        result.claim_weth_tx or result.claim_token_tx or result.collect_tx,
    )
    return result
