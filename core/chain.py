"""
Chain Gateway - On-Chain Read/Write Layer

The narrow seam between treasury logic and Base mainnet. Everything the
heartbeat does on-chain goes through one of these methods:

    reads:  native_balance, token_balance, token_decimals, available_fees
    writes: collect_rewards, claim_fees, swap, unwrap_weth, transfer_token

Design:
- Sync Web3 calls wrapped in asyncio.run_in_executor() (web3.py async is fragile)
- Embedded minimal ABI - only the functions we call, no compiled JSON needed
- Gas estimation + 20% buffer, nonce from pending pool
- Every write blocks until its receipt arrives or receipt_timeout_seconds passes
- Reads raise ChainReadError; writes return ChainTxResult(success=False) on
  revert or timeout. A timeout after broadcast keeps the hash (pending=True).
- swap() raises SwapError when nothing was spent (quote, approve, revert), so
  the buyback engine can take its fallback path, and TransactionFailed when
  the swap was broadcast but its receipt never arrived.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from web3 import Web3

from .adapters.swap_adapter import ZeroExSwapAdapter
from .config import TreasuryConfig
from .constants import BASE
from .errors import ChainReadError, ConfigError, SwapError, TransactionFailed
from .logging_setup import short_hash

logger = logging.getLogger("cxau.chain")


# ============================================================
# MINIMAL ABI - only functions we call at runtime
# ============================================================

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# WETH9: withdraw(uint256) unwraps to native ETH
WETH_ABI = [
    {
        "inputs": [{"name": "wad", "type": "uint256"}],
        "name": "withdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Fee locker: per-owner claimable balances, one per asset
FEE_LOCKER_ABI = [
    {
        "inputs": [
            {"name": "feeOwner", "type": "address"},
            {"name": "token", "type": "address"},
        ],
        "name": "availableFees",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "feeOwner", "type": "address"},
            {"name": "token", "type": "address"},
        ],
        "name": "claim",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# LP locker: collectRewards moves accrued LP fees into the fee locker
LP_LOCKER_ABI = [
    {
        "inputs": [{"name": "token", "type": "address"}],
        "name": "collectRewards",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class ChainTxResult:
    """Result of an on-chain transaction attempt."""
    success: bool
    tx_hash: str = ""
    error: str = ""
    gas_used: int = 0
    pending: bool = False     # broadcast, but no receipt before the timeout


@dataclass
class SwapResult:
    tx_hash: str
    buy_amount: int       # token base units actually received
    sell_token: str


# ============================================================
# GATEWAY INTERFACE
# ============================================================

class ChainGateway(ABC):
    """
    Everything the treasury needs from the chain. Implemented by
    Web3ChainGateway in production and by a scripted fake in tests.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """The wallet this gateway signs for."""
        ...

    @abstractmethod
    async def native_balance(self, address: str) -> int:
        ...

    @abstractmethod
    async def token_balance(self, token: str, address: str) -> int:
        ...

    @abstractmethod
    async def token_decimals(self, token: str) -> int:
        ...

    @abstractmethod
    async def available_fees(self, owner: str, asset: str) -> int:
        """Claimable (already collected) fees for `owner` in `asset`."""
        ...

    @abstractmethod
    async def collect_rewards(self, token: str) -> ChainTxResult:
        ...

    @abstractmethod
    async def claim_fees(self, owner: str, asset: str) -> ChainTxResult:
        ...

    @abstractmethod
    async def swap(self, sell_token: str, buy_token: str, sell_amount: int,
                   slippage_bps: int) -> SwapResult:
        """
        Sell `sell_amount` of `sell_token`. Raises SwapError when the swap
        did not spend anything, TransactionFailed when it was broadcast but
        the outcome is unknown.
        """
        ...

    @abstractmethod
    async def unwrap_weth(self, amount: int) -> ChainTxResult:
        ...

    @abstractmethod
    async def transfer_token(self, token: str, to: str, amount: int) -> ChainTxResult:
        ...


# ============================================================
# WEB3 GATEWAY
# ============================================================

class Web3ChainGateway(ChainGateway):
    """
    Usage:
        gateway = Web3ChainGateway(config, private_key)
        fees = await gateway.available_fees(gateway.address, BASE.WETH)
        result = await gateway.claim_fees(gateway.address, BASE.WETH)
    """

    def __init__(self, config: TreasuryConfig, private_key: str = "",
                 swap_adapter: Optional[ZeroExSwapAdapter] = None):
        """
        Without a private key the gateway is read-only: every write raises
        ConfigError. The snapshot exporter and the feed run that way.
        """
        self.config = config
        self.w3 = Web3(Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": 30}))

        self._private_key = ""
        self._address = ""
        if private_key:
            if not private_key.startswith("0x"):
                private_key = "0x" + private_key
            try:
                account = Account.from_key(private_key)
            except Exception as e:
                raise ConfigError(f"invalid private key: {type(e).__name__}") from e
            self._private_key = private_key
            self._address = account.address

        self.swap_adapter = swap_adapter or ZeroExSwapAdapter(
            config.swap_api_url, config.swap_api_key, chain_id=BASE.CHAIN_ID,
        )

        self._fee_locker = None
        if config.fee_locker_address:
            self._fee_locker = self.w3.eth.contract(
                address=Web3.to_checksum_address(config.fee_locker_address), abi=FEE_LOCKER_ABI,
            )
        self._lp_locker = None
        if config.lp_locker_address:
            self._lp_locker = self.w3.eth.contract(
                address=Web3.to_checksum_address(config.lp_locker_address), abi=LP_LOCKER_ABI,
            )
        self._weth = self.w3.eth.contract(address=Web3.to_checksum_address(BASE.WETH), abi=WETH_ABI)

        self._tx_count: int = 0
        self._last_error: str = ""

        wallet = f"{self._address[:10]}..." if self._address else "read-only"
        logger.info(f"Chain gateway ready: base | wallet={wallet} | rpc={config.rpc_url}")

    @property
    def address(self) -> str:
        return self._address

    def _require_signer(self):
        if not self._private_key:
            raise ConfigError("gateway is read-only: no private key for the treasury wallet")

    def _erc20(self, token: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

    def _require(self, contract, name: str):
        if contract is None:
            raise ConfigError(f"{name} address not configured")
        return contract

    # ============================================================
    # READS
    # ============================================================

    async def _read(self, label: str, fn) -> int:
        try:
            return int(await asyncio.get_running_loop().run_in_executor(None, fn))
        except ConfigError:
            raise
        except Exception as e:
            raise ChainReadError(f"{label}: {type(e).__name__}: {e}") from e

    async def native_balance(self, address: str) -> int:
        checksum = Web3.to_checksum_address(address)
        return await self._read("getBalance", lambda: self.w3.eth.get_balance(checksum))

    async def token_balance(self, token: str, address: str) -> int:
        fn = self._erc20(token).functions.balanceOf(Web3.to_checksum_address(address))
        return await self._read("balanceOf", fn.call)

    async def token_decimals(self, token: str) -> int:
        return await self._read("decimals", self._erc20(token).functions.decimals().call)

    async def available_fees(self, owner: str, asset: str) -> int:
        locker = self._require(self._fee_locker, "fee locker")
        fn = locker.functions.availableFees(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(asset),
        )
        return await self._read("availableFees", fn.call)

    async def _allowance(self, token: str, spender: str) -> int:
        fn = self._erc20(token).functions.allowance(self._address, Web3.to_checksum_address(spender))
        return await self._read("allowance", fn.call)

    # ============================================================
    # WRITES
    # ============================================================

    def _wait(self, tx_hash) -> dict:
        return self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.config.receipt_timeout_seconds,
        )

    def _broadcast(self, tx: dict) -> str:
        """Gas estimation + 20% buffer, sign, send. Runs in executor."""
        if not tx.get("gas"):
            try:
                gas_estimate = self.w3.eth.estimate_gas(tx)
                tx["gas"] = int(gas_estimate * 1.2)
            except Exception as gas_err:
                logger.warning(f"Gas estimation failed, using default 200k: {gas_err}")
                tx["gas"] = 200_000

        signed = self.w3.eth.account.sign_transaction(tx, self._private_key)
        return Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))

    async def _submit(self, label: str, build) -> ChainTxResult:
        """
        Build, sign and send a transaction, then block until its receipt.

        Args:
            label: short name for logs ("claim", "burn", ...)
            build: callable returning the unsigned tx dict (runs in executor)
        """
        loop = asyncio.get_running_loop()
        try:
            tx_hash_hex = await loop.run_in_executor(None, lambda: self._broadcast(build()))
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"TX ERROR [{label}]: {error}")
            self._last_error = error
            return ChainTxResult(success=False, error=error)

        try:
            receipt = await loop.run_in_executor(None, self._wait, tx_hash_hex)
        except Exception as e:
            # Already broadcast (TimeExhausted or RPC drop): outcome unknown, keep the hash
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"TX PENDING [{label}]: {short_hash(tx_hash_hex)} | {error}")
            self._last_error = error
            return ChainTxResult(success=False, tx_hash=tx_hash_hex, error=error, pending=True)

        if receipt["status"] == 1:
            self._tx_count += 1
            gas_used = receipt.get("gasUsed", 0)
            logger.info(f"TX SUCCESS [{label}]: {short_hash(tx_hash_hex)} | gas={gas_used}")
            return ChainTxResult(success=True, tx_hash=tx_hash_hex, gas_used=gas_used)

        error = f"TX reverted: {tx_hash_hex}"
        logger.warning(f"TX FAILED [{label}]: reverted {short_hash(tx_hash_hex)}")
        self._last_error = error
        return ChainTxResult(success=False, tx_hash=tx_hash_hex, error=error)

    def _tx_params(self, value: int = 0) -> dict:
        params = {
            "from": self._address,
            "nonce": self.w3.eth.get_transaction_count(self._address, "pending"),
            "gasPrice": self.w3.eth.gas_price,
            "chainId": BASE.CHAIN_ID,
        }
        if value:
            params["value"] = value
        return params

    async def _send_fn(self, label: str, tx_fn, value: int = 0) -> ChainTxResult:
        self._require_signer()
        return await self._submit(label, lambda: tx_fn.build_transaction(self._tx_params(value)))

    async def collect_rewards(self, token: str) -> ChainTxResult:
        locker = self._require(self._lp_locker, "LP locker")
        tx_fn = locker.functions.collectRewards(Web3.to_checksum_address(token))
        return await self._send_fn("collect", tx_fn)

    async def claim_fees(self, owner: str, asset: str) -> ChainTxResult:
        locker = self._require(self._fee_locker, "fee locker")
        tx_fn = locker.functions.claim(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(asset),
        )
        return await self._send_fn("claim", tx_fn)

    async def unwrap_weth(self, amount: int) -> ChainTxResult:
        return await self._send_fn("unwrap", self._weth.functions.withdraw(amount))

    async def transfer_token(self, token: str, to: str, amount: int) -> ChainTxResult:
        tx_fn = self._erc20(token).functions.transfer(Web3.to_checksum_address(to), amount)
        return await self._send_fn("transfer", tx_fn)

    async def _approve(self, token: str, spender: str, amount: int) -> ChainTxResult:
        tx_fn = self._erc20(token).functions.approve(Web3.to_checksum_address(spender), amount)
        return await self._send_fn("approve", tx_fn)

    async def swap(self, sell_token: str, buy_token: str, sell_amount: int,
                   slippage_bps: int) -> SwapResult:
        self._require_signer()
        quote = await self.swap_adapter.quote(
            sell_token, buy_token, sell_amount, self._address, slippage_bps,
        )
        selling_native = sell_token.lower() == BASE.NATIVE_TOKEN.lower()

        if quote.allowance_spender and not selling_native:
            try:
                current = await self._allowance(sell_token, quote.allowance_spender)
            except ChainReadError as e:
                raise SwapError(f"allowance check failed: {e}") from e
            if current < sell_amount:
                approval = await self._approve(sell_token, quote.allowance_spender, sell_amount)
                if not approval.success:
                    raise SwapError(f"approve failed: {approval.error}")

        try:
            before = await self.token_balance(buy_token, self._address)
        except ChainReadError:
            before = None

        def _build():
            tx = self._tx_params(quote.value)
            tx["to"] = Web3.to_checksum_address(quote.to)
            tx["data"] = quote.data
            if quote.gas:
                tx["gas"] = int(quote.gas * 1.2)
            return tx

        result = await self._submit("swap", _build)
        if result.pending:
            raise TransactionFailed(f"swap receipt not seen: {result.error}", tx_hash=result.tx_hash)
        if not result.success:
            raise SwapError(f"swap tx failed: {result.error}")

        bought = quote.min_buy_amount
        if before is not None:
            try:
                after = await self.token_balance(buy_token, self._address)
                bought = max(after - before, 0)
            except ChainReadError as e:
                logger.warning(f"Post-swap balance read failed, using quoted minimum: {e}")

        return SwapResult(tx_hash=result.tx_hash, buy_amount=bought, sell_token=sell_token)

    # ============================================================
    # STATUS
    # ============================================================

    def get_status(self) -> dict:
        """Status for debugging."""
        return {
            "wallet": (self._address[:10] + "...") if self._address else "read-only",
            "rpc": self.config.rpc_url,
            "tx_count": self._tx_count,
            "last_error": self._last_error,
        }


def build_gateway(config: TreasuryConfig, private_key: str = "") -> Web3ChainGateway:
    """Production gateway for `config`. Read-only when private_key is empty."""
    return Web3ChainGateway(config, private_key)
