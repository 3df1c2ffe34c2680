"""
CXAU treasury - main entry point

One process per command. The daemon re-invokes this file for each step,
so heartbeat and export always run in a fresh interpreter.

Usage:
    python main.py daemon       # heartbeat + export every CXAU_HEARTBEAT_MINUTES
    python main.py heartbeat    # one claim -> buyback -> burn cycle, KEY=VALUE report
    python main.py export       # write the public feed snapshot
    python main.py serve        # read-only feed API (uvicorn)
"""

import os
import sys
import logging
import argparse

import uvicorn
from dotenv import load_dotenv

from core.config import TreasuryConfig
from core.logging_setup import setup_logging

logger = logging.getLogger("cxau.main")


def _serve(args) -> int:
    from api.server import create_app

    config = TreasuryConfig.from_env(snapshot_var="CXAU_SNAPSHOT_PATH")
    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", "8000"))
    logger.info(f"Starting feed server on {host}:{port}")
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
    )
    return 0


def _heartbeat(args) -> int:
    from core.heartbeat import heartbeat_main
    return heartbeat_main()


def _export(args) -> int:
    from core.snapshot import export_main
    return export_main()


def _daemon(args) -> int:
    from core.daemon import daemon_main
    return daemon_main()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="CLAWXAU treasury heartbeat")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("daemon", help="run heartbeat + export on an interval").set_defaults(fn=_daemon)
    sub.add_parser("heartbeat", help="run one treasury cycle").set_defaults(fn=_heartbeat)
    sub.add_parser("export", help="write the feed snapshot").set_defaults(fn=_export)
    serve = sub.add_parser("serve", help="serve the read-only feed API")
    serve.add_argument("--host", default="", help="bind address (default: $HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, default=0, help="port (default: $PORT or 8000)")
    serve.set_defaults(fn=_serve)

    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging()

    try:
        return args.fn(args)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
