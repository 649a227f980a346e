"""FastAPI application factory for the Apoyo API.

Creates the application with:
- Contact, admin contact, company and job chip routers
- Edge cache store, key deriver and invalidation coordinator
- Credit ledger and access gate
- JWT authentication
- Prometheus metrics and correlation-aware logging
- One error envelope for every failure
- ORJSON for fast JSON serialization

Every shared component is built in the lifespan and kept on ``app.state``;
handlers reach them through dependencies, never through module globals.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

import apoyo
from apoyo.api.errors import register_exception_handlers
from apoyo.api.middleware import CacheControlMiddleware, CorrelationMiddleware, configure_cors
from apoyo.api.routers import admin_contacts, companies, contacts, health, jobs
from apoyo.api.routers import metrics as metrics_router
from apoyo.cache.backend import (
    EdgeBackend,
    MemoryEdgeBackend,
    RedisEdgeBackend,
    create_redis_client,
)
from apoyo.cache.invalidation import InvalidationCoordinator
from apoyo.cache.keys import CacheKeyDeriver
from apoyo.cache.store import TieredCacheStore
from apoyo.config import Settings, settings
from apoyo.gate.access import AccessGate
from apoyo.ledger.ledger import CreditLedger
from apoyo.ledger.store import LedgerStore
from apoyo.observability import configure_logging
from apoyo.observability.metrics import MetricsMiddleware, get_metrics
from apoyo.persistence.db import Database
from apoyo.persistence.repositories import SqlLedgerStore
from apoyo.persistence.schema import (
    foreign_chip_tables,
    resolve_schema_version,
    select_chip_source,
)
from apoyo.security.auth import AuthVerifier, JwtAuthVerifier

logger = logging.getLogger(__name__)


def _create_backend(cfg: Settings) -> EdgeBackend:
    if cfg.cache_backend == "memory":
        return MemoryEdgeBackend()
    return RedisEdgeBackend(create_redis_client(cfg.redis_url))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    On startup:
    - Configure structured logging
    - Initialize Prometheus metrics
    - Open the database, detect the chip schema and create missing tables
    - Connect the edge cache backend
    - Build ledger, gate, key deriver and invalidation coordinator
    - Select the chip source for the detected schema

    On shutdown:
    - Close the cache backend and database connections that were opened here
    """
    cfg: Settings = app.state.settings
    configure_logging(json_format=cfg.env != "dev", level=cfg.log_level)
    if cfg.enable_metrics:
        get_metrics()

    logger.info(f"Starting {cfg.app_name} ({cfg.env})")

    owned_db = app.state.db is None
    if owned_db:
        app.state.db = Database.from_url(
            cfg.database_url,
            pool_size=cfg.db_pool_size,
            max_overflow=cfg.db_max_overflow,
            echo=cfg.env == "dev",
        )
    db: Database = app.state.db
    # Detect before any DDL so created tables cannot sway the result
    version = await resolve_schema_version(cfg.schema_version, db.engine)
    await db.init_schema(skip=foreign_chip_tables(version))

    owned_backend = app.state.edge_backend is None
    backend: EdgeBackend = app.state.edge_backend or _create_backend(cfg)
    app.state.edge_backend = backend

    app.state.cache_store = TieredCacheStore(backend, timeout=cfg.cache_timeout_seconds)
    app.state.key_deriver = CacheKeyDeriver(
        prefix=cfg.cache_key_prefix, max_length=cfg.cache_max_key_length
    )
    app.state.invalidator = InvalidationCoordinator(app.state.cache_store, app.state.key_deriver)

    ledger_store: LedgerStore = app.state.ledger_store or SqlLedgerStore(db.session_factory)
    app.state.ledger_store = ledger_store
    app.state.ledger = CreditLedger(ledger_store, timeout=cfg.ledger_timeout_seconds)
    app.state.gate = AccessGate()

    if app.state.auth_verifier is None:
        app.state.auth_verifier = JwtAuthVerifier(cfg.jwt_secret, cfg.jwt_algorithm)

    app.state.chip_source = select_chip_source(version)

    logger.info(f"{cfg.app_name} startup complete (cache backend: {backend.name})")

    yield

    logger.info(f"Shutting down {cfg.app_name}")
    if owned_backend:
        await backend.close()
    if owned_db:
        await db.close()
    logger.info(f"{cfg.app_name} shutdown complete")


def create_app(
    app_settings: Settings | None = None,
    *,
    db: Database | None = None,
    edge_backend: EdgeBackend | None = None,
    ledger_store: LedgerStore | None = None,
    auth_verifier: AuthVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Any component passed in is used instead of the one the lifespan would
    build from settings; components passed in are not closed at shutdown.
    """
    cfg = app_settings or settings

    app = FastAPI(
        title="Apoyo API",
        description="Multi-tenant recruiting API with an edge cache and credit-gated contacts",
        version=apoyo.__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.settings = cfg
    app.state.db = db
    app.state.edge_backend = edge_backend
    app.state.ledger_store = ledger_store
    app.state.auth_verifier = auth_verifier

    # Added first runs innermost
    app.add_middleware(CacheControlMiddleware)
    app.add_middleware(CorrelationMiddleware)
    if cfg.enable_metrics:
        app.add_middleware(MetricsMiddleware)
    configure_cors(app, cfg.cors_allow_origins)

    register_exception_handlers(app)

    app.include_router(health.router)
    if cfg.enable_metrics:
        app.include_router(metrics_router.router)

    app.include_router(contacts.router)
    app.include_router(admin_contacts.router)
    app.include_router(companies.router)
    app.include_router(jobs.router)

    return app
