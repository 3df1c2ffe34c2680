"""
Best-effort chain reads.

Every read returns ReadResult(value, stale). A failed RPC call never
propagates: the caller's fallback is substituted and stale is set, so the
snapshot can say whether its numbers are fresh.
"""

import logging
from dataclasses import dataclass

from .chain import ChainGateway
from .constants import BASE
from .errors import ChainReadError, ConfigError

logger = logging.getLogger("cxau.reader")


@dataclass(frozen=True)
class ReadResult:
    value: int
    stale: bool = False


class TreasuryReader:
    def __init__(self, gateway: ChainGateway):
        self.gateway = gateway

    async def _safe(self, label: str, coro, fallback: int) -> ReadResult:
        try:
            return ReadResult(int(await coro), stale=False)
        except (ChainReadError, ConfigError) as e:
            logger.warning(f"{label} read failed, using fallback {fallback}: {e}")
            return ReadResult(int(fallback), stale=True)

    async def native_balance(self, wallet: str, fallback: int = 0) -> ReadResult:
        return await self._safe("native balance", self.gateway.native_balance(wallet), fallback)

    async def token_balance(self, token: str, wallet: str, fallback: int = 0) -> ReadResult:
        return await self._safe("token balance", self.gateway.token_balance(token, wallet), fallback)

    async def token_decimals(self, token: str) -> int:
        """Decimals for `token`, 18 when unreadable."""
        result = await self._safe(
            "token decimals", self.gateway.token_decimals(token), BASE.DEFAULT_TOKEN_DECIMALS,
        )
        return result.value

    async def unclaimed_fee(self, wallet: str, asset: str, fallback: int = 0) -> ReadResult:
        return await self._safe("unclaimed fee", self.gateway.available_fees(wallet, asset), fallback)
