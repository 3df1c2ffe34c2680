"""
SQLite persistence for the agent identity and its audit trail.

Single-row tables (id = 1): identity, activation, survival.
audit_log is append-only: rows are inserted, never updated or deleted.
It is the only record of what the treasury actually did.
"""

import time
import sqlite3
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass

from .constants import DAY_MS
from .logging_setup import short_hash

logger = logging.getLogger("cxau.store")


def now_ms() -> int:
    return int(time.time() * 1000)


def day_counter(activated_at_ms: Optional[int], at_ms: int) -> Optional[int]:
    """Days since activation, starting at 1. None if never activated."""
    if not activated_at_ms:
        return None
    return max(1, (at_ms - int(activated_at_ms)) // DAY_MS + 1)


@dataclass
class Identity:
    name: str
    address: str
    private_key: str = ""
    token_address: Optional[str] = None
    token_symbol: Optional[str] = None
    creator_address: str = ""


@dataclass
class Activation:
    activated_at: int  # epoch ms


@dataclass
class Survival:
    tier: str = "normal"
    total_fees_claimed: Optional[int] = None  # wei
    last_balance_check: Optional[int] = None  # epoch ms
    last_fee_claim: Optional[int] = None      # epoch ms


@dataclass
class AuditLogEntry:
    id: int
    timestamp: int
    action: str
    details: str = ""
    tx_hash: Optional[str] = None


def _opt_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class IdentityStore:
    def __init__(self, db_path: Path, readonly: bool = False):
        self.db_path = Path(db_path)
        self.readonly = readonly
        if readonly:
            # mode=ro fails loudly when the file is missing instead of creating it
            self.conn = sqlite3.connect(f"file:{self.db_path.as_posix()}?mode=ro", uri=True)
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        if not readonly:
            self.init_schema()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def init_schema(self):
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS identity (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                name TEXT NOT NULL,
                address TEXT NOT NULL,
                private_key TEXT DEFAULT '',
                token_address TEXT,
                token_symbol TEXT,
                creator_address TEXT DEFAULT ''
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS activation (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                activated_at INTEGER NOT NULL
            )
        """)

        # Written by the survival monitor, read-only here
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS survival (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                tier TEXT DEFAULT 'normal',
                total_fees_claimed TEXT,
                last_balance_check INTEGER,
                last_fee_claim INTEGER
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp INTEGER NOT NULL,
                action TEXT NOT NULL,
                details TEXT DEFAULT '',
                tx_hash TEXT
            )
        """)

        self.conn.commit()

    # === IDENTITY ===

    def get_identity(self) -> Optional[Identity]:
        row = self.conn.execute("SELECT * FROM identity WHERE id = 1").fetchone()
        if not row:
            return None
        return Identity(
            name=row["name"],
            address=row["address"],
            private_key=row["private_key"] or "",
            token_address=row["token_address"] or None,
            token_symbol=row["token_symbol"] or None,
            creator_address=row["creator_address"] or "",
        )

    def save_identity(self, identity: Identity):
        """Provisioning only. Heartbeat and exporter never call this."""
        self.conn.execute("""
            INSERT OR REPLACE INTO identity
            (id, name, address, private_key, token_address, token_symbol, creator_address)
            VALUES (1, ?, ?, ?, ?, ?, ?)
        """, (identity.name, identity.address, identity.private_key, identity.token_address,
              identity.token_symbol, identity.creator_address))
        self.conn.commit()

    # === ACTIVATION ===

    def get_activation(self) -> Optional[Activation]:
        row = self.conn.execute("SELECT * FROM activation WHERE id = 1").fetchone()
        if not row or row["activated_at"] is None:
            return None
        return Activation(activated_at=int(row["activated_at"]))

    def set_activation(self, activated_at: int):
        self.conn.execute(
            "INSERT OR REPLACE INTO activation (id, activated_at) VALUES (1, ?)",
            (int(activated_at),),
        )
        self.conn.commit()

    # === SURVIVAL ===

    def get_survival(self) -> Optional[Survival]:
        row = self.conn.execute("SELECT * FROM survival WHERE id = 1").fetchone()
        if not row:
            return None
        return Survival(
            tier=row["tier"] or "normal",
            total_fees_claimed=_opt_int(row["total_fees_claimed"]),
            last_balance_check=_opt_int(row["last_balance_check"]),
            last_fee_claim=_opt_int(row["last_fee_claim"]),
        )

    def save_survival(self, survival: Survival):
        total = str(survival.total_fees_claimed) if survival.total_fees_claimed is not None else None
        self.conn.execute("""
            INSERT OR REPLACE INTO survival
            (id, tier, total_fees_claimed, last_balance_check, last_fee_claim)
            VALUES (1, ?, ?, ?, ?)
        """, (survival.tier, total, survival.last_balance_check, survival.last_fee_claim))
        self.conn.commit()

    # === AUDIT LOG ===

    def add_audit(self, action: str, details: str = "", tx_hash: Optional[str] = None,
                  timestamp: Optional[int] = None) -> int:
        cursor = self.conn.execute("""
            INSERT INTO audit_log (timestamp, action, details, tx_hash)
            VALUES (?, ?, ?, ?)
        """, (timestamp if timestamp is not None else now_ms(), action, details, tx_hash))
        self.conn.commit()
        logger.info(f"audit #{cursor.lastrowid} {action}: {details}" + (f" tx={short_hash(tx_hash)}" if tx_hash else ""))
        return cursor.lastrowid

    def recent_audit(self, limit: int = 300) -> list[AuditLogEntry]:
        """Most recent audit rows, newest first."""
        rows = self.conn.execute(
            "SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [
            AuditLogEntry(
                id=row["id"],
                timestamp=int(row["timestamp"]),
                action=row["action"],
                details=row["details"] or "",
                tx_hash=row["tx_hash"] or None,
            )
            for row in rows
        ]

    def count_audit(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM audit_log").fetchone()[0]

    def close(self):
        self.conn.close()
