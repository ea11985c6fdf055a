"""Global error handlers: typed identity errors and consistent JSON responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from idres.identity.errors import ErrorKind, IdentityError

logger = structlog.get_logger()

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.USERNAME_ALREADY_EXISTS: 409,
    ErrorKind.USERNAME_LINKED_TO_DIFFERENT_WALLET: 409,
    ErrorKind.WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT: 409,
    ErrorKind.ACCOUNT_ALREADY_HAS_WALLET: 409,
    ErrorKind.INVALID_IDENTIFIER: 400,
    ErrorKind.ACCOUNT_NOT_FOUND: 404,
    ErrorKind.STORE_UNAVAILABLE: 503,
}


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(IdentityError)
    async def identity_exception_handler(request: Request, exc: IdentityError) -> JSONResponse:
        """Map an error kind to its status code; the kind travels in the body."""
        status_code = STATUS_BY_KIND[exc.kind]
        logger.info("identity_request_rejected", path=request.url.path, error=exc.kind.value, status=status_code)
        headers = {"Retry-After": "1"} if exc.kind is ErrorKind.STORE_UNAVAILABLE else None
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error": exc.kind.value},
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions with consistent JSON format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle validation errors with consistent JSON format."""
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, invariant violations included."""
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
