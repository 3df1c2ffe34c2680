"""
Snapshot Exporter - the public feed file.

Rebuilds the denormalized treasury view from the identity store and the
chain, then writes it as pretty-printed JSON:

    project / agent / balances / fees / telemetry / events / generatedAt / source

Chain reads are best-effort. When one fails, the matching figure from the
previous snapshot is used instead of zero, so a transient RPC outage does not
make the public numbers drop to nothing. Any such fallback marks the payload
source as "snapshot"; a fully fresh build is "live".

The file is replaced atomically (temp file + rename) under snapshot.lock, so
the feed endpoint never reads a half-written document.
"""

import os
import sys
import json
import asyncio
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .chain import build_gateway
from .chain_reader import ReadResult, TreasuryReader
from .config import TreasuryConfig
from .constants import BASE, PROJECT
from .errors import IdentityMissing
from .events import build_events
from .identity_store import IdentityStore, day_counter, now_ms
from .locking import advisory_lock
from .units import format_ether, format_units, iso_from_ms, parse_units

logger = logging.getLogger("cxau.snapshot")

EXPORT_AUDIT_LIMIT = 300
FEED_AUDIT_LIMIT = 200

SOURCE_LIVE = "live"
SOURCE_SNAPSHOT = "snapshot"
SOURCE_UNAVAILABLE = "unavailable"


@dataclass
class SnapshotResult:
    payload: dict
    stale_fields: list[str] = field(default_factory=list)

    @property
    def stale(self) -> bool:
        return bool(self.stale_fields)


def previous_units(previous: Optional[dict], section: str, key: str, decimals: int) -> int:
    """
    A figure from the previous snapshot, back in base units.

    Parsed with the field's own decimals. Missing or malformed values give 0.
    """
    if not previous:
        return 0
    text = (previous.get(section) or {}).get(key)
    if text in (None, ""):
        return 0
    try:
        return max(parse_units(text, decimals), 0)
    except (ValueError, ArithmeticError):
        logger.warning(f"Previous snapshot {section}.{key} is not a decimal: {text!r}")
        return 0


class SnapshotBuilder:
    def __init__(self, reader: TreasuryReader):
        self.reader = reader

    async def build(self, store: IdentityStore, previous: Optional[dict] = None,
                    audit_limit: int = EXPORT_AUDIT_LIMIT,
                    now: Optional[int] = None) -> SnapshotResult:
        now = now if now is not None else now_ms()

        identity = store.get_identity()
        if identity is None:
            raise IdentityMissing("No identity found in DB.")
        activation = store.get_activation()
        survival = store.get_survival()
        rows = store.recent_audit(audit_limit)

        wallet = identity.address
        token = identity.token_address
        token_decimals = (
            await self.reader.token_decimals(token) if token else BASE.DEFAULT_TOKEN_DECIMALS
        )

        eth_read = self.reader.native_balance(
            wallet, fallback=previous_units(previous, "balances", "eth", BASE.NATIVE_DECIMALS),
        )
        if token:
            eth, token_balance, unclaimed_weth, unclaimed_token = await asyncio.gather(
                eth_read,
                self.reader.token_balance(
                    token, wallet,
                    fallback=previous_units(previous, "balances", "token", token_decimals),
                ),
                self.reader.unclaimed_fee(
                    wallet, BASE.WETH,
                    fallback=previous_units(previous, "fees", "unclaimedWeth", BASE.NATIVE_DECIMALS),
                ),
                self.reader.unclaimed_fee(
                    wallet, token,
                    fallback=previous_units(previous, "fees", "unclaimedToken", token_decimals),
                ),
            )
        else:
            # No token yet: no balance to hold and no locker entry to read
            eth = await eth_read
            token_balance = unclaimed_weth = unclaimed_token = ReadResult(0)

        stale_fields = [
            name for name, result in (
                ("balances.eth", eth),
                ("balances.token", token_balance),
                ("fees.unclaimedWeth", unclaimed_weth),
                ("fees.unclaimedToken", unclaimed_token),
            )
            if result.stale
        ]

        activated_at = activation.activated_at if activation else None
        total_claimed = survival.total_fees_claimed if survival else None

        payload = {
            "project": {
                "slug": PROJECT.SLUG,
                "name": PROJECT.NAME,
                "symbol": identity.token_symbol or PROJECT.DEFAULT_SYMBOL,
            },
            "agent": {
                "name": identity.name,
                "wallet": wallet,
                "tokenAddress": token,
                "creatorAddress": identity.creator_address,
                "activated": activation is not None,
                "activatedAt": iso_from_ms(activated_at),
                "day": day_counter(activated_at, now),
            },
            "balances": {
                "eth": format_ether(eth.value),
                "token": format_units(token_balance.value, token_decimals) if token else None,
            },
            "fees": {
                "unclaimedWeth": format_ether(unclaimed_weth.value),
                "unclaimedToken": format_units(unclaimed_token.value, token_decimals) if token else None,
                "totalClaimedWeth": format_ether(total_claimed) if total_claimed is not None else None,
            },
            "telemetry": {
                "tier": (survival.tier if survival else None) or "normal",
                "lastBalanceCheck": iso_from_ms(survival.last_balance_check if survival else None),
                "lastFeeClaim": iso_from_ms(survival.last_fee_claim if survival else None),
            },
            "events": build_events(rows),
            "generatedAt": iso_from_ms(now),
            "source": SOURCE_SNAPSHOT if stale_fields else SOURCE_LIVE,
        }

        if stale_fields:
            logger.warning(f"Snapshot built with fallback values for: {', '.join(stale_fields)}")
        return SnapshotResult(payload=payload, stale_fields=stale_fields)


# ============================================================
# FILE I/O
# ============================================================

def read_previous_snapshot(path: Path) -> Optional[dict]:
    """Last written snapshot, or None if absent or unreadable."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Previous snapshot unreadable, ignoring: {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Previous snapshot is not a JSON object, ignoring: {path}")
        return None
    return data


def write_snapshot_atomic(path: Path, payload: dict, lock_dir: Path):
    """Write-to-temp then rename, under the snapshot lock."""
    path = Path(path)
    with advisory_lock(Path(lock_dir) / "snapshot.lock"):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), suffix=".tmp", prefix=f".{path.stem}_"
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, str(path))
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


async def export_snapshot(config: TreasuryConfig, store: IdentityStore,
                          reader: TreasuryReader,
                          now: Optional[int] = None) -> SnapshotResult:
    previous = read_previous_snapshot(config.snapshot_path)
    result = await SnapshotBuilder(reader).build(
        store, previous=previous, audit_limit=EXPORT_AUDIT_LIMIT, now=now,
    )
    write_snapshot_atomic(config.snapshot_path, result.payload, config.lock_dir)
    logger.info(
        f"Snapshot written: {config.snapshot_path} | events={len(result.payload['events'])} "
        f"| source={result.payload['source']}"
    )
    return result


def export_main(config: Optional[TreasuryConfig] = None) -> int:
    """Process entry for `main.py export`. Returns the exit code."""
    try:
        config = config or TreasuryConfig.from_env(snapshot_var="CXAU_SNAPSHOT_OUT")
        reader = TreasuryReader(build_gateway(config))
        with IdentityStore(config.db_path, readonly=True) as store:
            asyncio.run(export_snapshot(config, store, reader))
    except Exception as e:
        logger.error(f"Snapshot export failed: {type(e).__name__}: {e}")
        print(f"Snapshot export failed: {e}", file=sys.stderr)
        return 1
    print(f"Snapshot written: {config.snapshot_path}")
    return 0
