"""
Swap Adapter - 0x Swap API (allowance-holder flow)

Fetches a firm quote for selling WETH (or native ETH) into the project token.
The quote carries a ready-to-sign transaction; the chain gateway signs and
submits it. This adapter never touches keys or the RPC.

Protocol flow:
    GET /swap/allowance-holder/quote?chainId=8453&sellToken=..&buyToken=..
        &sellAmount=..&taker=..&slippageBps=..
    -> 200 {buyAmount, minBuyAmount, transaction{to,data,value,gas}, issues{allowance}}
    -> if issues.allowance is set, taker must approve issues.allowance.spender first
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from core.constants import BASE
from core.errors import SwapError

logger = logging.getLogger("cxau.adapter.swap")


@dataclass
class SwapQuote:
    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int
    min_buy_amount: int
    to: str
    data: str
    value: int = 0
    gas: int = 0
    allowance_spender: Optional[str] = None  # set when an approve is required


class ZeroExSwapAdapter:
    """Quote client for the 0x Swap API v2."""

    QUOTE_PATH = "/swap/allowance-holder/quote"

    def __init__(self, api_url: str, api_key: str = "", chain_id: int = BASE.CHAIN_ID,
                 timeout_seconds: float = 15.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.chain_id = chain_id
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict:
        headers = {"0x-version": "v2"}
        if self.api_key:
            headers["0x-api-key"] = self.api_key
        return headers

    async def quote(self, sell_token: str, buy_token: str, sell_amount: int,
                    taker: str, slippage_bps: int) -> SwapQuote:
        params = {
            "chainId": str(self.chain_id),
            "sellToken": sell_token,
            "buyToken": buy_token,
            "sellAmount": str(sell_amount),
            "taker": taker,
            "slippageBps": str(slippage_bps),
        }
        url = f"{self.api_url}{self.QUOTE_PATH}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url, params=params, headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise SwapError(f"quote HTTP {resp.status}: {body[:200]}")
                    data = await resp.json()
        except SwapError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SwapError(f"quote request failed: {type(e).__name__}: {e}") from e

        return self.parse_quote(data, sell_token, buy_token, sell_amount)

    @staticmethod
    def parse_quote(data: dict, sell_token: str, buy_token: str, sell_amount: int) -> SwapQuote:
        """Validate a quote payload. Raises SwapError when it is not executable."""
        if not data.get("liquidityAvailable", True):
            raise SwapError(f"no liquidity for {sell_token[:10]}... -> {buy_token[:10]}...")

        tx = data.get("transaction") or {}
        if not tx.get("to") or not tx.get("data"):
            raise SwapError("quote has no executable transaction")

        try:
            buy_amount = int(data.get("buyAmount") or 0)
            min_buy_amount = int(data.get("minBuyAmount") or buy_amount)
            value = int(tx.get("value") or 0)
            gas = int(tx.get("gas") or 0)
        except (TypeError, ValueError) as e:
            raise SwapError(f"malformed quote amounts: {e}") from e

        allowance = (data.get("issues") or {}).get("allowance") or {}
        spender = allowance.get("spender") or None

        return SwapQuote(
            sell_token=sell_token,
            buy_token=buy_token,
            sell_amount=sell_amount,
            buy_amount=buy_amount,
            min_buy_amount=min_buy_amount,
            to=tx["to"],
            data=tx["data"],
            value=value,
            gas=gas,
            allowance_spender=spender,
        )
