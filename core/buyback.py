"""
Buyback/Burn Engine

Spends a bounded slice of the wallet's WETH on the project token, then
burns a fixed fraction of what was just bought.

    spend = balance * BUYBACK_BPS / 10000, clamped:
        below MIN_BUYBACK -> 0 (not worth the gas)
        above MAX_BUYBACK -> MAX_BUYBACK (single-cycle exposure cap)
    burn  = bought * BURN_BPS / 10000

Burns are funded only by this cycle's purchase, never by held principal.
Basis-point math truncates; the sub-unit remainder is not carried over.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .chain import ChainGateway, SwapResult
from .chain_reader import TreasuryReader
from .config import TreasuryConfig
from .constants import BASE
from .errors import SwapError, TransactionFailed, UnwrapFailed
from .identity_store import IdentityStore
from .units import bps_of, format_ether, format_units

logger = logging.getLogger("cxau.buyback")


@dataclass
class BuybackResult:
    buy_tx: Optional[str] = None
    burn_tx: Optional[str] = None
    buy_amount: int = 0
    spend: int = 0
    pending_tx: Optional[str] = None


def compute_spend(balance: int, buyback_bps: int, min_buyback: int, max_buyback: int) -> int:
    """Bounded spend for one cycle. Never in (0, min_buyback), never above max_buyback."""
    preferred = bps_of(balance, buyback_bps)
    if preferred < min_buyback:
        return 0
    return min(preferred, max_buyback)


def compute_burn(bought: int, burn_bps: int) -> int:
    return bps_of(bought, burn_bps)


async def _swap_with_fallback(gateway: ChainGateway, token: str, spend: int,
                              slippage_bps: int) -> SwapResult:
    """
    WETH -> token first. Some routes only take native ETH, so when the WETH
    swap spent nothing (SwapError) unwrap exactly `spend` and retry once with
    ETH as the sell side. A second failure propagates and aborts the buyback
    step. TransactionFailed (broadcast, receipt not seen) is never retried:
    the first swap may still land.
    """
    try:
        return await gateway.swap(BASE.WETH, token, spend, slippage_bps)
    except SwapError as e:
        logger.warning(f"WETH swap failed, falling back to unwrap + native swap: {e}")

    unwrap = await gateway.unwrap_weth(spend)
    if not unwrap.success:
        raise UnwrapFailed(f"WETH unwrap reverted: {unwrap.error or unwrap.tx_hash}")

    return await gateway.swap(BASE.NATIVE_TOKEN, token, spend, slippage_bps)


async def buyback_cycle(gateway: ChainGateway, store: IdentityStore, config: TreasuryConfig,
                        wallet: str, token: str, symbol: str, token_decimals: int) -> BuybackResult:
    reader = TreasuryReader(gateway)
    weth_balance = (await reader.token_balance(BASE.WETH, wallet)).value

    spend = compute_spend(
        weth_balance, config.buyback_bps, config.min_buyback_wei, config.max_buyback_wei,
    )
    if spend == 0:
        logger.info(
            f"Buyback skipped: WETH balance {format_ether(weth_balance)} "
            f"-> preferred spend below {format_ether(config.min_buyback_wei)}"
        )
        return BuybackResult()

    logger.info(f"Buyback: spending {format_ether(spend)} of {format_ether(weth_balance)} WETH")
    try:
        swap = await _swap_with_fallback(gateway, token, spend, config.slippage_bps)
    except TransactionFailed as e:
        logger.warning(f"Buyback swap outcome unknown, skipping burn: {e}")
        store.add_audit(
            "buyback",
            f"heartbeat: Buyback swap for {format_ether(spend)} ETH sent, receipt not seen",
            e.tx_hash or None,
        )
        return BuybackResult(spend=spend, pending_tx=e.tx_hash or None)


    store.add_audit(
        "buyback",
        f"heartbeat: Bought {format_units(swap.buy_amount, token_decimals)} ${symbol} "
        f"for {format_ether(spend)} ETH",
        swap.tx_hash,
    )
    result = BuybackResult(buy_tx=swap.tx_hash, buy_amount=swap.buy_amount, spend=spend)

    burn_amount = compute_burn(swap.buy_amount, config.burn_bps)
    if burn_amount > 0:
        burn = await gateway.transfer_token(token, BASE.DEAD_ADDRESS, burn_amount)
        if burn.success:
            result.burn_tx = burn.tx_hash
            store.add_audit(
                "burn",
                f"Burned {format_units(burn_amount, token_decimals)} ${symbol}",
                burn.tx_hash,
            )
        else:
            logger.warning(f"Burn transfer did not land: {burn.error}")

    return result
