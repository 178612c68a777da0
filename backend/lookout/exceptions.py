"""Standardized exceptions and error handling for the Lookout API."""

import logging
from collections.abc import Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# =============================================================================
# Error Response Model
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Standardized error response format."""

    error: str  # Error type/category
    message: str  # Human-readable message
    code: str  # Machine-readable error code
    status_code: int
    request_id: str
    details: list[ErrorDetail] | None = None
    path: str | None = None


# =============================================================================
# Custom Exceptions
# =============================================================================


class LookoutException(Exception):
    """Base exception for Lookout errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: list[ErrorDetail] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class NotFoundError(LookoutException):
    """Resource not found error."""

    def __init__(
        self,
        resource: str,
        identifier: str | None = None,
        details: list[ErrorDetail] | None = None,
    ):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
        )


class BadRequestError(LookoutException):
    """Bad request error."""

    def __init__(
        self,
        message: str = "Bad request",
        details: list[ErrorDetail] | None = None,
    ):
        super().__init__(
            message=message,
            code="BAD_REQUEST",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class UnsupportedRuleTypeError(LookoutException):
    """Rule type is not one of the known variants."""

    def __init__(self, rule_type: str, rule_id: str | None = None):
        self.rule_type = rule_type
        message = f"Unsupported rule type: {rule_type}"
        if rule_id:
            message = f"Rule '{rule_id}' has unsupported type: {rule_type}"
        super().__init__(
            message=message,
            code="UNSUPPORTED_RULE_TYPE",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )


class RuleDefinitionError(LookoutException):
    """Rule body cannot be parsed or evaluated."""

    def __init__(
        self,
        message: str = "Rule evaluation failed",
        details: list[ErrorDetail] | None = None,
    ):
        super().__init__(
            message=message,
            code="INVALID_RULE_DEFINITION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class ExpressionSyntaxError(RuleDefinitionError):
    """Expression rule could not be parsed."""

    def __init__(self, message: str, position: int | None = None):
        self.position = position
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message=message)


class StoreUnavailableError(LookoutException):
    """Event, rule or alert store cannot be reached."""

    def __init__(
        self,
        store: str,
        message: str | None = None,
        details: list[ErrorDetail] | None = None,
    ):
        self.store = store
        msg = message or f"Store '{store}' is unavailable"
        super().__init__(
            message=msg,
            code="STORE_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
        )


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    request: Request,
    error: str,
    message: str,
    code: str,
    status_code: int,
    details: list[ErrorDetail] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    request_id = getattr(request.state, "request_id", str(uuid4()))

    response = ErrorResponse(
        error=error,
        message=message,
        code=code,
        status_code=status_code,
        request_id=request_id,
        details=details,
        path=str(request.url.path),
    )

    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(exclude_none=True),
    )


async def lookout_exception_handler(request: Request, exc: LookoutException) -> JSONResponse:
    """Handle Lookout custom exceptions."""
    return create_error_response(
        request=request,
        error=exc.__class__.__name__,
        message=exc.message,
        code=exc.code,
        status_code=exc.status_code,
        details=exc.details,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        details.append(
            ErrorDetail(
                field=field,
                message=error["msg"],
                code=error["type"],
            )
        )

    return create_error_response(
        request=request,
        error="ValidationError",
        message="Request validation failed",
        code="VALIDATION_ERROR",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details=details,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle HTTP exceptions raised by routing (unknown path or method)."""
    if isinstance(exc, StarletteHTTPException):
        error_map = {
            404: ("NotFound", "NOT_FOUND"),
            405: ("MethodNotAllowed", "METHOD_NOT_ALLOWED"),
        }

        error_type, code = error_map.get(exc.status_code, ("HTTPError", f"HTTP_{exc.status_code}"))

        return create_error_response(
            request=request,
            error=error_type,
            message=str(exc.detail),
            code=code,
            status_code=exc.status_code,
        )

    return create_error_response(
        request=request,
        error="InternalServerError",
        message="An unexpected error occurred",
        code="INTERNAL_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception("Unhandled exception: %s", exc)

    return create_error_response(
        request=request,
        error="InternalServerError",
        message="An unexpected error occurred",
        code="INTERNAL_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# =============================================================================
# Middleware
# =============================================================================


async def request_id_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Add request ID to each request for tracing."""
    request_id = request.headers.get("X-Request-ID", str(uuid4()))
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# =============================================================================
# Setup Function
# =============================================================================


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(LookoutException, lookout_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.middleware("http")(request_id_middleware)
