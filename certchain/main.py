"""
CertChain — Application Entry Point

FastAPI application. The lifespan owns every collaborator: it constructs
and connects the Redis client, record store, Pinata publisher, and ledger
client, injects them into the IssuanceOrchestrator, and closes them on
shutdown.

`uvicorn certchain.main:app`
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Load .env file before any configuration is loaded
load_dotenv()

from certchain.api.errors import install_error_handlers
from certchain.api.routers.admin import router as admin_router
from certchain.api.routers.certificates import router as certificate_router
from certchain.clients.ledger import LedgerClient
from certchain.clients.publisher import PinataPublisher
from certchain.clients.redis import RedisClient
from certchain.config import load_config
from certchain.engine.orchestrator import IssuanceOrchestrator
from certchain.store import create_record_store
from certchain.telemetry.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup and shutdown sequence.
    """
    # ── 1. Load configuration ─────────────────────────────────
    config_path = os.environ.get("CERTCHAIN_CONFIG_PATH", "config/default.yaml")
    config = load_config(config_path)
    app.state.config = config

    # ── 2. Set up logging ─────────────────────────────────────
    setup_logging(config.logging, instance_id=config.instance_id)
    logger.info("certchain_starting", instance_id=config.instance_id, config_path=config_path)

    # ── 3. Record store ───────────────────────────────────────
    redis_client: RedisClient | None = None
    if config.store.backend == "redis":
        redis_client = RedisClient(config.redis)
        await redis_client.connect()
    app.state.redis = redis_client
    store = create_record_store(config.store, redis_client)
    app.state.store = store

    # ── 4. Metadata publisher ─────────────────────────────────
    publisher = PinataPublisher(config.pinata)
    await publisher.connect()
    app.state.publisher = publisher

    # ── 5. Ledger client ──────────────────────────────────────
    ledger = LedgerClient(config.ledger)
    await ledger.connect()
    app.state.ledger = ledger

    # ── 6. Orchestrator ───────────────────────────────────────
    app.state.issuance = IssuanceOrchestrator(
        publisher=publisher,
        ledger=ledger,
        store=store,
    )
    logger.info(
        "certchain_ready",
        store=config.store.backend,
        contract=config.ledger.contract_address,
        signer=ledger.signer_address,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────
    await ledger.close()
    await publisher.close()
    if redis_client is not None:
        await redis_client.close()
    logger.info("certchain_shutdown_complete")


def create_app(lifespan_handler: Any = lifespan) -> FastAPI:
    application = FastAPI(
        title="CertChain",
        description="Certificate issuance, versioning, and referral engine",
        lifespan=lifespan_handler,
    )
    cors_origins = ["http://localhost:3000"]
    # Frontend origin(s), comma-separated
    _extra_origins = os.environ.get("REACT_APP_FRONTEND_URL", "")
    if _extra_origins:
        cors_origins.extend(o.strip() for o in _extra_origins.split(",") if o.strip())
    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(application)
    application.include_router(certificate_router)
    application.include_router(admin_router)

    @application.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        redis = getattr(request.app.state, "redis", None)
        store_status = await redis.health_check() if redis is not None else {"status": "memory"}
        return {"status": "OK", "message": "Backend server is running", "store": store_status}

    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with the configured host and port."""
    import uvicorn

    config = load_config(os.environ.get("CERTCHAIN_CONFIG_PATH", "config/default.yaml"))
    uvicorn.run("certchain.main:app", host=config.server.host, port=config.server.port)
