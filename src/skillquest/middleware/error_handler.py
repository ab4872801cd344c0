"""Global error handlers: every failure renders as JSON with a detail."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from skillquest.progression.errors import ErrorKind, ProgressionError

logger = structlog.get_logger()

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_COMPLETED: 409,
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFLICT: 409,
    ErrorKind.STORE: 503,
}


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(ProgressionError)
    async def progression_exception_handler(request: Request, exc: ProgressionError) -> JSONResponse:
        status_code = STATUS_BY_KIND.get(exc.kind, 500)
        if status_code >= 500:
            logger.error("progression_failure", path=request.url.path, kind=exc.kind.value, error=exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.message, "kind": exc.kind.value})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "kind": ErrorKind.VALIDATION.value, "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
