"""
PM-Fit Backend - Shared API Dependencies

The per-process RequestQueue and SearchService are built once in
main.create_app and stored on app.state. Routers reach them through these
dependencies so tests can swap them via app.dependency_overrides.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from pmfit.config import settings
from pmfit.queue import RequestQueue
from pmfit.search import SearchService

# Rate limiter, per-IP, applied per-endpoint via decorator
limiter = Limiter(key_func=get_remote_address, enabled=settings.environment != "test")


def get_request_queue(request: Request) -> RequestQueue:
    return request.app.state.request_queue


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service
