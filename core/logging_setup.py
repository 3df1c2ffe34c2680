"""
Process-wide logging setup.

Logs go to stderr. The heartbeat's stdout is reserved for its KEY=VALUE
report, which external tooling parses.
"""

import os
import re
import sys
import logging


class SecretMaskingFilter(logging.Filter):
    """Redact 64-char hex strings (private keys) from all log output."""
    _PATTERN = re.compile(r'(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
            except (TypeError, ValueError):
                return True
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


def short_hash(tx_hash: str) -> str:
    """0x1234abcd...9876fedc - readable in logs and never matched by the key mask."""
    if not tx_hash or len(tx_hash) <= 20:
        return tx_hash or ""
    return f"{tx_hash[:10]}...{tx_hash[-8:]}"


def setup_logging(level: str = "") -> None:
    """Configure root logging once per process. LOG_LEVEL env var by default."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    mask = SecretMaskingFilter()
    for handler in logging.root.handlers:
        handler.addFilter(mask)
