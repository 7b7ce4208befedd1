"""Enforcer FastAPI application factory + lifespan lifecycle.

Startup sequence:
  1. load_config()                 → app.state.config
  2. create_key_ledger()           → app.state.ledger
  3. create_audit_backend()        → app.state.audit_backend
  4. PolicySettingsLoader + watcher → app.state.settings
  5. platform httpx client, BitbucketClient, key generator, notifier
  6. GovernanceEngine              → app.state.engine
  7. expiry sweeper task           → app.state.sweep_task
  8. app.state.ready = True

Shutdown (reverse):
  ready = False → cancel sweeper → stop watcher → close http clients →
  close audit backend → close ledger

Run with:
  enforcer                 # via pyproject.toml [project.scripts]
  python -m enforcer.run
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from enforcer import __version__
from enforcer.api.limiter import limiter
from enforcer.api.router import api_router, events_router
from enforcer.audit.factory import create_audit_backend
from enforcer.audit.protocol import AuditBackend
from enforcer.config import Config, load_config
from enforcer.governance.engine import GovernanceEngine
from enforcer.governance.sweeper import run_expiry_sweeper
from enforcer.health import router as health_router
from enforcer.ledger.factory import create_key_ledger
from enforcer.platform.bitbucket import BitbucketClient, create_platform_client
from enforcer.platform.keygen import OpenSSHKeyPairGenerator
from enforcer.platform.notifications import LoggingNotificationSink, WebhookNotificationSink
from enforcer.platform.protocol import NotificationSink
from enforcer.settings import PolicySettingsLoader
from enforcer.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


async def _cancel(task: asyncio.Task[None] | None) -> None:
    if task is not None and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("enforcer_starting")

    # load_config() raises SystemExit on a broken config file, before ready=True.
    config: Config = load_config()
    app.state.config = config

    ledger = await create_key_ledger(config)
    app.state.ledger = ledger

    audit_backend: AuditBackend = await create_audit_backend(config)
    app.state.audit_backend = audit_backend

    settings = PolicySettingsLoader(config.policy)
    app.state.settings = settings
    watcher_task: asyncio.Task[None] | None = None
    if config.path:
        watcher_task = asyncio.create_task(settings.start_watcher(config.path))
    else:
        logger.debug("policy_watcher_disabled")

    platform_http = create_platform_client(
        config.platform.base_url,
        token=config.platform.token,
        timeout_s=config.platform.timeout_s,
    )
    platform = BitbucketClient(platform_http)
    app.state.directory = platform

    # Separate client: the platform client carries the platform bearer token.
    notify_http: httpx.AsyncClient | None = None
    notifier: NotificationSink
    if config.notifications.webhook_url:
        notify_http = httpx.AsyncClient(timeout=httpx.Timeout(config.platform.timeout_s))
        notifier = WebhookNotificationSink(notify_http, config.notifications.webhook_url)
    else:
        notifier = LoggingNotificationSink()

    engine = GovernanceEngine(
        ledger=ledger,
        key_store=platform,
        grant_index=platform,
        directory=platform,
        generator=OpenSSHKeyPairGenerator(config.keys.algorithm, config.keys.rsa_bits),
        notifier=notifier,
        settings=settings,
        audit_backend=audit_backend,
    )
    app.state.engine = engine

    sweep_task: asyncio.Task[None] | None = None
    if config.sweep.enabled:
        sweep_task = asyncio.create_task(
            run_expiry_sweeper(
                engine,
                audit_backend,
                hour_utc=config.sweep.hour_utc,
                orphan_grace=timedelta(minutes=config.sweep.orphan_grace_minutes),
                audit_retention_days=config.audit.retention_days,
            )
        )
    else:
        logger.warning("expiry_sweep_disabled")
    app.state.sweep_task = sweep_task

    app.state.ready = True
    logger.info(
        "enforcer_ready",
        platform=config.platform.base_url,
        authorized_user=config.policy.authorized_user,
        authorized_group=config.policy.authorized_group,
        days_allowed_for_user_keys=config.policy.days_allowed_for_user_keys,
    )

    yield

    logger.info("enforcer_shutting_down")
    app.state.ready = False

    await _cancel(sweep_task)
    await _cancel(watcher_task)

    for client in (platform_http, notify_http):
        if client is None:
            continue
        try:
            await client.aclose()
        except Exception as exc:
            logger.warning("http_client_close_failed", error=str(exc))

    await audit_backend.close()
    await ledger.close()
    logger.info("enforcer_shutdown_complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the enforcer FastAPI application.

    Call directly in tests for an isolated instance; the tests populate
    app.state themselves instead of running the lifespan.
    """
    application = FastAPI(
        title="SSH Key Enforcer",
        description="Governance of SSH keys on a source-hosting platform",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    # /health answers 503 until the lifespan flips this.
    application.state.ready = False

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_middleware(SlowAPIMiddleware)

    application.include_router(health_router)
    application.include_router(events_router, prefix="/events")
    application.include_router(api_router, prefix="/api")

    @application.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return application


app = create_app()
