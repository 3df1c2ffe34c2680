"""
Treasury constants - Layer 0 (not configurable)

Chain addresses, project metadata and the one-time historical event that
the public feed must always carry. Anything an operator may tune lives in
core/config.py instead.
"""

from dataclasses import dataclass
from typing import Final


# ============================================================
# CHAIN
# ============================================================

@dataclass(frozen=True)
class BaseChain:
    """Base mainnet. Frozen dataclass = immutable at runtime."""

    CHAIN_ID: Final[int] = 8453
    DEFAULT_RPC: Final[str] = "https://mainnet.base.org"
    EXPLORER: Final[str] = "https://basescan.org"
    NATIVE_SYMBOL: Final[str] = "ETH"

    WETH: Final[str] = "0x4200000000000000000000000000000000000006"
    # Sell-side sentinel understood by swap routers for the native asset
    NATIVE_TOKEN: Final[str] = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
    DEAD_ADDRESS: Final[str] = "0x000000000000000000000000000000000000dEaD"

    NATIVE_DECIMALS: Final[int] = 18
    DEFAULT_TOKEN_DECIMALS: Final[int] = 18


BASE = BaseChain()


def tx_url(tx_hash: str) -> str:
    """Block explorer URL for a transaction."""
    return f"{BASE.EXPLORER}/tx/{tx_hash}"


# ============================================================
# PROJECT
# ============================================================

@dataclass(frozen=True)
class Project:
    SLUG: Final[str] = "cxau"
    NAME: Final[str] = "CLAWXAU"
    DEFAULT_SYMBOL: Final[str] = "CXAU"


PROJECT = Project()

DAY_MS: Final[int] = 86_400_000
BPS_DENOMINATOR: Final[int] = 10_000


# ============================================================
# SEED EVENT
# ============================================================

# One-time 20% fee share sent at launch. Predates the audit log's retention
# window, so the exporter re-injects it whenever it is missing.
CLAWNCH_FEE_TX_HASH: Final[str] = (
    "0xff30687b16b3389c5fd16d79c3f8cea3456749346da48b90b53a7135bd094e52"
)

CLAWNCH_FEE_EVENT: Final[dict] = {
    "type": "clawnch_fee",
    "action": "clawnch_fee_20_percent",
    "message": (
        "20% CLAWNCH fee share sent to Clawnch Admin Wallet "
        "(0xFC426DFeAe55Dae2f936a592450C9ECEa87A5736)."
    ),
    "timestamp": 1771446000000,
    "isoTime": "2026-02-18T20:20:00.000Z",
    "txHash": CLAWNCH_FEE_TX_HASH,
    "txUrl": tx_url(CLAWNCH_FEE_TX_HASH),
}
