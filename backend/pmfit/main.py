"""
PM-Fit Backend - FastAPI Application Factory

App creation, middleware (CORS, rate limiting, request ID logging), router
registration, and the single per-process RequestQueue.
Run with: uvicorn pmfit.main:app --reload
"""

import asyncio
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from pmfit.api import functions, signals
from pmfit.api.deps import limiter
from pmfit.config import log, settings
from pmfit.functions import DEFAULT_USER_AGENT, FunctionsClient
from pmfit.models import QueueConfig
from pmfit.queue import RequestQueue
from pmfit.search import SearchService

# Upper bound on how long shutdown waits for queued work to settle
SHUTDOWN_DRAIN_SECONDS = 15.0


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Log the X-Request-Id header from every incoming request.

    The frontend includes X-Request-Id on every fetch call.
    This middleware logs it so REST errors can be correlated with backend logs.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id", "none")
        log(
            "INFO",
            "request received",
            method=request.method,
            path=request.url.path,
            request_id=request_id,
        )
        response = await call_next(request)
        return response


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Steps:
        1. Build the function client, the one RequestQueue for this process,
           and the search service that shares it
        2. Create FastAPI instance; lifespan drains the queue and closes clients
        3. Add CORS middleware (origins from settings.cors_origins)
        4. Add request ID logging middleware
        5. Add rate limiting (slowapi)
        6. Register routers (functions, signals)
    """
    functions_client = FunctionsClient(
        settings.functions_base_url,
        api_key=settings.functions_api_key,
        timeout_seconds=settings.http_timeout_seconds,
    )
    request_queue = RequestQueue(QueueConfig.from_settings(settings), invoker=functions_client.invoke)
    search_client = httpx.AsyncClient(headers={"User-Agent": DEFAULT_USER_AGENT})
    search_service = SearchService(
        request_queue,
        search_client,
        serper_api_key=settings.serper_api_key,
        tavily_api_key=settings.tavily_api_key,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log(
            "INFO",
            "pm-fit backend starting",
            functions_base_url=settings.functions_base_url,
            max_concurrency=request_queue.config.max_concurrency,
            max_retries=request_queue.config.max_retries,
            search_providers=",".join(search_service.providers()) or "none (synthetic signals)",
        )
        yield
        try:
            await asyncio.wait_for(request_queue.join(), timeout=SHUTDOWN_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            log("WARN", "shutdown drain timed out", **request_queue.status().model_dump())
        await functions_client.aclose()
        await search_client.aclose()
        log("INFO", "pm-fit backend stopped")

    app = FastAPI(
        title="PM-Fit API",
        version="0.1.0",
        description="Market-fit analysis backend: rate-limited upstream calls through a shared request queue.",
        lifespan=lifespan,
    )
    app.state.request_queue = request_queue
    app.state.search_service = search_service

    # CORS
    origins = [origin.strip() for origin in settings.cors_origins.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID logging
    app.add_middleware(RequestIdMiddleware)

    # Rate limiting (applied per-endpoint via decorator, not globally)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(functions.router)
    app.include_router(signals.router)

    return app


app = create_app()


@app.get("/api/health")
async def health_check():
    """
    GET /api/health

    Returns: { "status": "ok", "version": "0.1.0" }
    """
    return {"status": "ok", "version": "0.1.0"}
