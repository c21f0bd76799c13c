import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ai_filter.api.routes import health, proxy, webhooks
from ai_filter.config import settings
from ai_filter.logging import configure_logging
from ai_filter.services.catalog import shopify_catalog_factory
from ai_filter.services.orchestrator import QueryOrchestrator
from ai_filter.services.query_cache import QueryCache
from ai_filter.services.rate_limiter import RateLimiter
from ai_filter.services.resolver import FilterResolver, build_llm_client
from ai_filter.services.shop_store import SqlShopStore

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the long-lived clients and the orchestrator; tear them down on exit."""
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    http_client = httpx.AsyncClient()
    llm_client = build_llm_client(
        settings.anthropic_api_key, max_retries=settings.llm_max_retries
    )

    rate_limiter = RateLimiter(sweep_interval=settings.rate_limit_sweep_interval_seconds)
    orchestrator = QueryOrchestrator(
        shops=SqlShopStore(async_sessionmaker(engine, expire_on_commit=False)),
        resolver=FilterResolver(
            llm_client,
            model=settings.anthropic_model,
            timeout_seconds=settings.llm_timeout_seconds,
            max_tokens=settings.llm_max_tokens,
        ),
        cache=QueryCache(
            max_entries=settings.cache_max_entries,
            ttl_seconds=settings.cache_ttl_seconds,
        ),
        rate_limiter=rate_limiter,
        catalog_factory=shopify_catalog_factory(
            http_client,
            access_token=settings.shopify_admin_access_token,
            api_version=settings.shopify_api_version,
        ),
        settings=settings,
    )
    app.state.orchestrator = orchestrator
    rate_limiter.start()
    logger.info("app_started", environment=settings.environment, model=settings.anthropic_model)

    try:
        yield
    finally:
        await orchestrator.drain()
        await rate_limiter.stop()
        await llm_client.close()
        await http_client.aclose()
        await engine.dispose()
        logger.info("app_stopped")


app = FastAPI(
    title="AI Filter API",
    version=health.VERSION,
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID to every request for log correlation.

    Sets the ID in structlog context vars (appears in all log entries for the
    request) and returns it in the X-Request-ID response header so widget
    error reports can be matched to server logs.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start = time.monotonic()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", request.headers.get("X-Request-ID", ""))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return consistent ErrorResponse JSON for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


app.include_router(health.router)
app.include_router(proxy.router, prefix="/api/proxy")
app.include_router(webhooks.router, prefix="/webhooks")
