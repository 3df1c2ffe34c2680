"""
CXAU Feed API - FastAPI Backend

Endpoints:
- GET     /cxau/feed       Treasury feed (live build, else snapshot, else placeholder)
- GET     /api/cxau/feed   Same, under the path the web frontend calls
- OPTIONS both feed paths  CORS preflight
- anything else           405 METHOD_NOT_ALLOWED (JSON error, CORS headers)
- GET     /health          Liveness

Read-only. The identity store is opened with mode=ro and no request ever
signs or sends a transaction. An unreachable chain or store degrades the
response (warning + snapshot data); it never turns into a 5xx.
"""

import sqlite3
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.chain import ChainGateway, build_gateway
from core.chain_reader import TreasuryReader
from core.config import TreasuryConfig
from core.constants import PROJECT
from core.errors import IdentityMissing
from core.identity_store import IdentityStore, now_ms
from core.snapshot import (
    FEED_AUDIT_LIMIT,
    SOURCE_SNAPSHOT,
    SOURCE_UNAVAILABLE,
    SnapshotBuilder,
    read_previous_snapshot,
)
from core.units import iso_from_ms

logger = logging.getLogger("cxau.api")

FEED_PATHS = ("/cxau/feed", "/api/cxau/feed")

WARNING_DB_UNAVAILABLE = "Live DB unavailable in this environment, serving snapshot."
WARNING_NOTHING_AVAILABLE = "Live DB unavailable and no snapshot found."
WARNING_STALE_READS = "Some chain reads failed, serving last known values."

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


# ============================================================
# MODELS
# ============================================================

class ApiError(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ApiError


class HealthResponse(BaseModel):
    ok: bool = True


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ApiError(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=CORS_HEADERS)


def create_app(config: TreasuryConfig, gateway: Optional[ChainGateway] = None) -> FastAPI:
    """
    Create the feed app.

    gateway: chain access for live builds. Defaults to a read-only
    Web3ChainGateway; tests pass a fake.
    """
    reader = TreasuryReader(gateway or build_gateway(config))
    builder = SnapshotBuilder(reader)

    app = FastAPI(
        title="CXAU treasury feed",
        description="Public, read-only view of the CLAWXAU treasury agent.",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    def _snapshot_fallback(reason: str) -> JSONResponse:
        snapshot = read_previous_snapshot(config.snapshot_path)
        if snapshot is not None:
            logger.warning(f"Serving snapshot {config.snapshot_path}: {reason}")
            return JSONResponse(
                content={**snapshot, "source": SOURCE_SNAPSHOT, "warning": WARNING_DB_UNAVAILABLE},
                headers=CORS_HEADERS,
            )
        logger.warning(f"No live DB and no snapshot: {reason}")
        return JSONResponse(
            content={
                "project": {
                    "slug": PROJECT.SLUG,
                    "name": PROJECT.NAME,
                    "symbol": PROJECT.DEFAULT_SYMBOL,
                },
                "source": SOURCE_UNAVAILABLE,
                "warning": WARNING_NOTHING_AVAILABLE,
                "events": [],
                "generatedAt": iso_from_ms(now_ms()),
            },
            headers=CORS_HEADERS,
        )

    # ============================================================
    # ROUTES
    # ============================================================

    async def feed():
        """Live treasury view, degrading to the last written snapshot."""
        try:
            store = IdentityStore(config.db_path, readonly=True)
        except (sqlite3.Error, OSError) as e:
            return _snapshot_fallback(f"{type(e).__name__}: {e}")

        try:
            previous = read_previous_snapshot(config.snapshot_path)
            result = await builder.build(store, previous=previous, audit_limit=FEED_AUDIT_LIMIT)
        except IdentityMissing:
            return _error(404, "IDENTITY_NOT_FOUND", "No agent identity found.")
        except Exception as e:
            logger.error(f"Live feed build failed: {type(e).__name__}: {e}")
            return _snapshot_fallback(f"{type(e).__name__}: {e}")
        finally:
            store.close()

        payload = result.payload
        if result.stale:
            payload["warning"] = WARNING_STALE_READS
        return JSONResponse(content=payload, headers=CORS_HEADERS)

    async def feed_preflight():
        return Response(status_code=200, headers=CORS_HEADERS)

    for path in FEED_PATHS:
        app.add_api_route(path, feed, methods=["GET"])
        app.add_api_route(path, feed_preflight, methods=["OPTIONS"])

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        # Every unlisted method (HEAD, POST, ...) gets the feed's error shape
        if exc.status_code == 405:
            return _error(405, "METHOD_NOT_ALLOWED", "Use GET.")
        return await http_exception_handler(request, exc)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Liveness only. Does not touch the chain or the store."""
        return HealthResponse()

    @app.on_event("startup")
    async def _startup():
        logger.info(f"Feed API starting up | db={config.db_path} | snapshot={config.snapshot_path}")

    return app
