"""
Treasury configuration.

Built once at process start from the environment (and .env, via
python-dotenv) and passed into every component. Business logic never reads
os.environ directly.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .constants import BASE
from .errors import ConfigError
from .units import parse_ether

logger = logging.getLogger("cxau.config")

DEFAULT_DB_PATH = "data/clawtomaton.db"
DEFAULT_SNAPSHOT_PATH = "public/cxau/feed.json"


@dataclass
class TreasuryConfig:
    db_path: Path = Path(DEFAULT_DB_PATH)
    rpc_url: str = BASE.DEFAULT_RPC
    snapshot_path: Path = Path(DEFAULT_SNAPSHOT_PATH)
    lock_dir: Path = Path("data/locks")

    # Spend policy (wei / basis points)
    claim_threshold_wei: int = 10**16        # 0.01 ETH
    min_buyback_wei: int = 10**16            # 0.01 ETH
    max_buyback_wei: int = 5 * 10**16        # 0.05 ETH
    buyback_bps: int = 3500                  # 35% of WETH balance per cycle
    burn_bps: int = 5000                     # 50% of this cycle's purchase
    slippage_bps: int = 180

    # Timing
    interval_minutes: int = 15
    receipt_timeout_seconds: int = 120
    step_timeout_seconds: int = 900

    # Contracts / services
    fee_locker_address: str = ""
    lp_locker_address: str = ""
    swap_api_url: str = "https://api.0x.org"
    swap_api_key: str = ""
    private_key_override: str = ""

    def __post_init__(self):
        for name in ("buyback_bps", "burn_bps", "slippage_bps"):
            value = getattr(self, name)
            if not 0 <= value <= 10_000:
                raise ConfigError(f"{name} must be within 0..10000, got {value}")
        if self.min_buyback_wei > self.max_buyback_wei:
            raise ConfigError(
                f"min buyback ({self.min_buyback_wei}) exceeds max buyback ({self.max_buyback_wei})"
            )
        if self.interval_minutes < 1:
            self.interval_minutes = 1

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, snapshot_var: str = "CXAU_SNAPSHOT_OUT") -> "TreasuryConfig":
        """
        Read configuration from the environment.

        snapshot_var selects which variable names the snapshot file:
        the exporter writes to CXAU_SNAPSHOT_OUT, the feed reads
        CXAU_SNAPSHOT_PATH.
        """
        if env is None:
            load_dotenv()
            env = os.environ

        def _ether(key: str, default: str) -> int:
            raw = env.get(key, default)
            try:
                wei = parse_ether(raw)
            except ValueError:
                raise ConfigError(f"{key} is not a decimal ETH amount: {raw!r}")
            if wei < 0:
                raise ConfigError(f"{key} must not be negative: {raw!r}")
            return wei

        def _int(key: str, default: int) -> int:
            raw = env.get(key, "")
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ConfigError(f"{key} is not an integer: {raw!r}")

        return cls(
            db_path=Path(env.get("CLAW_TOMATON_DB_PATH", DEFAULT_DB_PATH)),
            rpc_url=env.get("BASE_RPC_URL", BASE.DEFAULT_RPC),
            snapshot_path=Path(env.get(snapshot_var, DEFAULT_SNAPSHOT_PATH)),
            lock_dir=Path(env.get("CXAU_LOCK_DIR", "data/locks")),
            claim_threshold_wei=_ether("CXAU_CLAIM_THRESHOLD_ETH", "0.01"),
            min_buyback_wei=_ether("CXAU_MIN_BUYBACK_ETH", "0.01"),
            max_buyback_wei=_ether("CXAU_MAX_BUYBACK_ETH", "0.05"),
            buyback_bps=_int("CXAU_BUYBACK_BPS", 3500),
            burn_bps=_int("CXAU_BURN_BPS", 5000),
            slippage_bps=_int("CXAU_SLIPPAGE_BPS", 180),
            interval_minutes=_int("CXAU_HEARTBEAT_MINUTES", 15),
            receipt_timeout_seconds=_int("CXAU_RECEIPT_TIMEOUT_SECONDS", 120),
            step_timeout_seconds=_int("CXAU_STEP_TIMEOUT_SECONDS", 900),
            fee_locker_address=env.get("CXAU_FEE_LOCKER_ADDRESS", ""),
            lp_locker_address=env.get("CXAU_LP_LOCKER_ADDRESS", ""),
            swap_api_url=env.get("CXAU_SWAP_API_URL", "https://api.0x.org"),
            swap_api_key=env.get("ZEROX_API_KEY", ""),
            private_key_override=env.get("CXAU_PRIVATE_KEY", ""),
        )
