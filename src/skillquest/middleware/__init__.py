"""Middleware registration."""

from fastapi import FastAPI

from skillquest.config import Settings
from skillquest.middleware.cors import setup_cors
from skillquest.middleware.error_handler import setup_error_handlers
from skillquest.middleware.logging import setup_logging
from skillquest.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and middleware.

    Starlette runs middleware in reverse-add order, so CORS (added last) wraps
    every response, including error responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
