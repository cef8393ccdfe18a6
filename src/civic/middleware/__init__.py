"""Middleware registration."""

from fastapi import FastAPI

from civic.config import Settings
from civic.middleware.cors import setup_cors
from civic.middleware.error_handler import setup_error_handlers
from civic.middleware.logging import setup_logging
from civic.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost).
    CORS must be outermost so it wraps error responses from inner middleware.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
