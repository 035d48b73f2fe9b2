"""
Seeksy Webhooks - provider webhook ingestion, retry and sequential signing.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from src.config import get_settings
from src.api.router import api_router
from src.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("seeksy")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Seeksy webhooks starting up (env=%s)", settings.app_env)

    # Security warnings
    unsigned = [
        name for name, secret in (
            ("ELEVENLABS_WEBHOOK_SECRET", settings.elevenlabs_webhook_secret),
            ("SIGNWELL_WEBHOOK_SECRET", settings.signwell_webhook_secret),
            ("DAILY_WEBHOOK_SECRET", settings.daily_webhook_secret),
        ) if not secret
    ]
    if unsigned:
        logger.warning(
            "%s not set - those webhooks are accepted unsigned outside production.",
            ", ".join(unsigned),
        )

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    # Retry worker - in-process only when no external scheduler drives the endpoint
    if settings.retry_worker_enabled:
        from src.workers.retry_worker import run_retry_worker
        worker_tasks.append(asyncio.create_task(run_retry_worker()))
        logger.info("Retry worker started")
    else:
        logger.info("In-process retry worker disabled (RETRY_WORKER_ENABLED=false)")

    yield

    # Graceful shutdown - give workers time to finish current work
    logger.info("Seeksy webhooks shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    logger.info("Seeksy webhooks shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Seeksy Webhooks",
        description="Provider webhook ingestion, retry worker and sequential document signing",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS - signer pages call the signing endpoints from the browser
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            settings.app_base_url,
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
