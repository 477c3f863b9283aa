"""FastAPI application entry point for the relay.

Routes:
- GET /: redirect to the project page (RELAY_HOME_URL)
- POST /webhooks/{slug}: GitHub webhook receiver
- GET /health: liveness probe
- GET /ready: readiness probe (key-value backend reachable)
- GET /metrics: Prometheus metrics

Configuration is read from RELAY_* environment variables when the
application starts, and logged with secrets redacted.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from src.relay import __version__
from src.relay.config import RelaySettings, get_settings
from src.relay.context import AppContext, build_context
from src.relay.errors import PayloadError, SignatureError, StoreError
from src.relay.events.metrics import generate_metrics_output
from src.relay.webhook.handler import DELIVERY_HEADER
from src.relay.webhook.models import EventType


logger = logging.getLogger(__name__)


# Metric labels for deliveries whose event header is not trusted or not handled
UNAUTHENTICATED_LABEL = "unauthenticated"
OTHER_EVENT_LABEL = "other"

_EVENT_LABELS = frozenset(e.value for e in EventType)


def _event_label(event_type: str) -> str:
    """Bound an authenticated event type to a fixed set of label values."""
    return event_type if event_type in _EVENT_LABELS else OTHER_EVENT_LABEL


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Render stdlib log records through structlog.

    Module loggers keep using ``logging.getLogger(__name__)`` with
    ``extra={...}``; the extras become key/value pairs in the output.

    Args:
        level: Root log level name.
        json_logs: Emit one JSON object per line instead of console output.
    """
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_logs:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer()]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderers,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: RelaySettings) -> None:
    """Log configuration values with secrets redacted.

    Args:
        settings: The relay settings to log.
    """
    logger.info("Relay configuration:")
    logger.info(f"  Webhook Secret: {_redact_secret(settings.webhook_secret)}")
    logger.info("  App Private Key: <redacted>")
    logger.info(f"  Webhook Path: /webhooks/{settings.webhook_slug}")
    logger.info(f"  Automation Actor Id: {settings.automation_actor_id}")
    logger.info(f"  Command Prefix: {settings.command_prefix}")
    logger.info(
        f"  Redis URL: {_redact_secret(settings.redis_url, visible_chars=8) if settings.redis_url else '<in-memory>'}"
    )
    logger.info(f"  Request Timeout Seconds: {settings.request_timeout_seconds}")
    logger.info(f"  Max Body Bytes: {settings.max_body_bytes}")
    logger.info(f"  Workers: {settings.worker_count}")
    logger.info(f"  Queue Size: {settings.queue_size}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")
    logger.info(f"  Home URL: {settings.home_url or '<disabled>'}")


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing anything larger than ``limit`` bytes.

    Raises:
        HTTPException: 413 when the body is too large.
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail="Payload too large")

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise HTTPException(status_code=413, detail="Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


def create_app(
    settings: Optional[RelaySettings] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """Create the relay application.

    Args:
        settings: Optional settings; read from the environment at startup
                  when omitted.
        context: Optional pre-built context. Tests pass one and start it
                 themselves when they bypass the lifespan.

    Returns:
        The FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown."""
        logger.info("Relay starting up...")

        ctx: Optional[AppContext] = app.state.context
        if ctx is None:
            cfg = settings or get_settings()
            configure_logging(cfg.log_level, cfg.json_logs)
            ctx = build_context(cfg)
            app.state.context = ctx

        _log_configuration(ctx.settings)
        await ctx.start()
        logger.info("Relay started successfully")

        yield

        logger.info("Relay shutting down...")
        await ctx.close()
        logger.info("Relay shutdown complete")

    app = FastAPI(
        title="Harmless Relay",
        description="GitHub App automation: comment commands and workflow check runs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.context = context

    @app.get("/")
    async def home(request: Request):
        """Redirect the bare host to the project page, if one is configured."""
        ctx: Optional[AppContext] = request.app.state.context
        home_url = ctx.settings.home_url if ctx is not None else None
        if not home_url:
            return Response(status_code=404)
        return RedirectResponse(home_url, status_code=307)

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request):
        """Readiness probe endpoint.

        Returns:
            Status and dependency health; 503 when the key-value backend
            does not answer.
        """
        ctx: Optional[AppContext] = request.app.state.context
        backend_ok = ctx is not None and await ctx.backend.ping()
        body = {
            "status": "ready" if backend_ok else "not_ready",
            "dependencies": {
                "store": "healthy" if backend_ok else "unavailable",
            },
            "bootstrapped": ctx is not None and ctx.identity.current is not None,
        }
        return JSONResponse(body, status_code=200 if backend_ok else 503)

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        ctx: Optional[AppContext] = request.app.state.context
        registry = ctx.metrics.registry if ctx is not None else None
        return Response(
            content=generate_metrics_output(registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.post("/webhooks/{slug}")
    async def github_webhook(slug: str, request: Request):
        """GitHub webhook receiver endpoint.

        Unknown slugs, missing event headers and bad signatures all get the
        same empty 404 so the endpoint reveals nothing to unsigned callers.

        Returns:
            202 with the dispatch outcome.
        """
        ctx: Optional[AppContext] = request.app.state.context
        if ctx is None:
            logger.error("Relay not initialized")
            return JSONResponse({"status": "error"}, status_code=503)

        if slug != ctx.settings.webhook_slug:
            return Response(status_code=404)

        delivery_id = request.headers.get(DELIVERY_HEADER)

        try:
            body = await _read_body(request, ctx.settings.max_body_bytes)
        except HTTPException:
            ctx.metrics.record_webhook(UNAUTHENTICATED_LABEL, "too_large")
            logger.warning(
                "Webhook body exceeds limit",
                extra={"delivery_id": delivery_id, "limit": ctx.settings.max_body_bytes},
            )
            raise

        handler = ctx.webhook_handler
        try:
            event_type = handler.authenticate(request.headers, body)
        except SignatureError as e:
            ctx.metrics.record_webhook(UNAUTHENTICATED_LABEL, "rejected")
            logger.warning(
                "Rejected webhook: %s",
                e.message,
                extra={"delivery_id": delivery_id},
            )
            return Response(status_code=404)

        try:
            event = handler.parse(event_type, body)
        except PayloadError as e:
            ctx.metrics.record_webhook(_event_label(event_type), "invalid_payload")
            return JSONResponse(
                {"status": "invalid_payload", "field": e.field},
                status_code=400,
            )

        try:
            outcome = await ctx.dispatcher.dispatch(event, delivery_id=delivery_id)
        except StoreError as e:
            ctx.metrics.record_webhook(_event_label(event_type), "error")
            logger.error(
                "Store failure while handling %s: %s",
                event_type,
                e.message,
                extra={"delivery_id": delivery_id},
            )
            return JSONResponse({"status": "error"}, status_code=500)

        ctx.metrics.record_webhook(_event_label(event_type), outcome.value)
        return JSONResponse({"status": outcome.value}, status_code=202)

    return app


app = create_app()


def main() -> None:
    """Run the relay with uvicorn."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)
    uvicorn.run(
        "src.relay.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
