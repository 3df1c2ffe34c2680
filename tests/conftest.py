"""
Pytest configuration and shared fixtures
"""

import itertools
import sys
from pathlib import Path
from typing import Optional

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.chain import ChainGateway, ChainTxResult, SwapResult
from core.config import TreasuryConfig
from core.constants import BASE
from core.errors import ChainReadError, SwapError, TransactionFailed
from core.identity_store import Identity, IdentityStore, Survival

WALLET = "0x1111111111111111111111111111111111111111"
TOKEN = "0x2222222222222222222222222222222222222222"
CREATOR = "0x3333333333333333333333333333333333333333"
FEE_LOCKER = "0x4444444444444444444444444444444444444444"
LP_LOCKER = "0x5555555555555555555555555555555555555555"

ETH = 10**18
ACTIVATED_AT = 1771400000000


class FakeGateway(ChainGateway):
    """
    Scripted chain. Balances and fees live in dicts keyed by lower-cased
    address; every write is recorded in `writes` as (op, *args).
    """

    def __init__(self, wallet: str = WALLET):
        self._address = wallet
        self.native = {}
        self.tokens = {}
        self.fees = {}
        self.decimals = {}

        self.failing_reads: set[str] = set()
        self.collect_ok = True
        self.claim_ok = True
        self.unwrap_ok = True
        self.transfer_ok = True
        self.swap_failures = 0          # next N swaps raise SwapError
        self.swap_pending = False       # next swap is broadcast but never confirmed
        self.swap_buy_amount = 0

        self.writes: list[tuple] = []
        self._hashes = (f"0x{n:064x}" for n in itertools.count(1))

    # --- scripting helpers ---

    def set_token_balance(self, token: str, wallet: str, amount: int):
        self.tokens[(token.lower(), wallet.lower())] = amount

    def get_token_balance(self, token: str, wallet: Optional[str] = None) -> int:
        return self.tokens.get((token.lower(), (wallet or self._address).lower()), 0)

    def set_fees(self, asset: str, amount: int):
        self.fees[asset.lower()] = amount

    def ops(self) -> list[str]:
        return [w[0] for w in self.writes]

    def get_status(self) -> dict:
        return {"wallet": self._address[:10] + "...", "tx_count": len(self.writes)}

    def _fail_read(self, name: str):
        if name in self.failing_reads or "all" in self.failing_reads:
            raise ChainReadError(f"{name}: connection refused")

    def _tx(self, ok: bool, error: str = "TX reverted") -> ChainTxResult:
        tx_hash = next(self._hashes)
        if ok:
            return ChainTxResult(success=True, tx_hash=tx_hash, gas_used=21_000)
        return ChainTxResult(success=False, tx_hash=tx_hash, error=error)

    # --- ChainGateway ---

    @property
    def address(self) -> str:
        return self._address

    async def native_balance(self, address: str) -> int:
        self._fail_read("native")
        return self.native.get(address.lower(), 0)

    async def token_balance(self, token: str, address: str) -> int:
        self._fail_read("token")
        return self.get_token_balance(token, address)

    async def token_decimals(self, token: str) -> int:
        self._fail_read("decimals")
        return self.decimals.get(token.lower(), 18)

    async def available_fees(self, owner: str, asset: str) -> int:
        self._fail_read("fees")
        return self.fees.get(asset.lower(), 0)

    async def collect_rewards(self, token: str) -> ChainTxResult:
        self.writes.append(("collect", token))
        return self._tx(self.collect_ok)

    async def claim_fees(self, owner: str, asset: str) -> ChainTxResult:
        self.writes.append(("claim", owner, asset))
        result = self._tx(self.claim_ok)
        if result.success:
            amount = self.fees.pop(asset.lower(), 0)
            self.set_token_balance(asset, owner, self.get_token_balance(asset, owner) + amount)
        return result

    async def swap(self, sell_token: str, buy_token: str, sell_amount: int,
                   slippage_bps: int) -> SwapResult:
        self.writes.append(("swap", sell_token, buy_token, sell_amount))
        if self.swap_failures > 0:
            self.swap_failures -= 1
            raise SwapError("no route for sell token")
        if self.swap_pending:
            self.swap_pending = False
            raise TransactionFailed("swap receipt not seen: TimeExhausted", tx_hash=next(self._hashes))
        if sell_token.lower() != BASE.NATIVE_TOKEN.lower():
            self.set_token_balance(sell_token, self._address,
                                   self.get_token_balance(sell_token) - sell_amount)
        self.set_token_balance(buy_token, self._address,
                               self.get_token_balance(buy_token) + self.swap_buy_amount)
        return SwapResult(tx_hash=next(self._hashes), buy_amount=self.swap_buy_amount,
                          sell_token=sell_token)

    async def unwrap_weth(self, amount: int) -> ChainTxResult:
        self.writes.append(("unwrap", amount))
        result = self._tx(self.unwrap_ok)
        if result.success:
            self.set_token_balance(BASE.WETH, self._address,
                                   self.get_token_balance(BASE.WETH) - amount)
            self.native[self._address.lower()] = self.native.get(self._address.lower(), 0) + amount
        return result

    async def transfer_token(self, token: str, to: str, amount: int) -> ChainTxResult:
        self.writes.append(("transfer", token, to, amount))
        result = self._tx(self.transfer_ok)
        if result.success:
            self.set_token_balance(token, self._address, self.get_token_balance(token) - amount)
            self.set_token_balance(token, to, self.get_token_balance(token, to) + amount)
        return result


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def config(tmp_path):
    return TreasuryConfig(
        db_path=tmp_path / "clawtomaton.db",
        snapshot_path=tmp_path / "public" / "cxau" / "feed.json",
        lock_dir=tmp_path / "locks",
        fee_locker_address=FEE_LOCKER,
        lp_locker_address=LP_LOCKER,
    )


@pytest.fixture
def store(config):
    """Writable store seeded with identity, activation and survival rows."""
    s = IdentityStore(config.db_path)
    s.save_identity(Identity(
        name="Clawtomaton",
        address=WALLET,
        private_key="",
        token_address=TOKEN,
        token_symbol="CXAU",
        creator_address=CREATOR,
    ))
    s.set_activation(ACTIVATED_AT)
    s.save_survival(Survival(
        tier="normal",
        total_fees_claimed=25 * 10**15,
        last_balance_check=ACTIVATED_AT + 60_000,
        last_fee_claim=None,
    ))
    yield s
    s.close()


@pytest.fixture
def empty_store(config):
    s = IdentityStore(config.db_path)
    yield s
    s.close()
