"""Error taxonomy and standardized JSON error responses"""

import logging
from typing import Dict, Any, Optional
from enum import Enum

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification"""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    STATE_CONFLICT = "state_conflict"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INTERNAL = "internal"


HTTP_STATUS_BY_CATEGORY: Dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.RATE_LIMITED: 429,
    ErrorCategory.STATE_CONFLICT: 400,
    ErrorCategory.INSUFFICIENT_FUNDS: 400,
    ErrorCategory.INTERNAL: 500,
}


class BookingServiceError(Exception):
    """Base class for every error the core reports to callers"""

    category = ErrorCategory.INTERNAL

    def __init__(self, message: str, kind: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.category.value
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CATEGORY[self.category]

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "kind": self.kind}
        body.update(self.details)
        return body


class ValidationError(BookingServiceError):
    category = ErrorCategory.VALIDATION


class AuthenticationError(BookingServiceError):
    category = ErrorCategory.AUTHENTICATION

    def __init__(self, message: str = "Unauthorized", **kwargs):
        super().__init__(message, **kwargs)


class PermissionDeniedError(BookingServiceError):
    category = ErrorCategory.AUTHORIZATION


class NotFoundError(BookingServiceError):
    category = ErrorCategory.NOT_FOUND


class StateConflictError(BookingServiceError):
    category = ErrorCategory.STATE_CONFLICT


class InsufficientFundsError(BookingServiceError):
    category = ErrorCategory.INSUFFICIENT_FUNDS

    def __init__(self, message: str = "INSUFFICIENT_FUNDS", **kwargs):
        kwargs.setdefault("kind", "INSUFFICIENT_FUNDS")
        super().__init__(message, **kwargs)


class RateLimitExceededError(BookingServiceError):
    """429 with retry hint; carries the headers the response must expose"""

    category = ErrorCategory.RATE_LIMITED

    def __init__(self, retry_after: int, limit: int, endpoint: str):
        super().__init__(
            "Too Many Requests",
            details={
                "message": f"Rate limit exceeded for {endpoint} requests. Please try again later.",
                "retryAfter": retry_after,
            },
        )
        self.retry_after = retry_after
        self.headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": "0",
            "Retry-After": str(retry_after),
        }


class LedgerInconsistencyError(BookingServiceError):
    """Wallet state contradicts a booking; never auto-corrected"""

    category = ErrorCategory.INTERNAL

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("kind", "ledger_inconsistency")
        super().__init__(message, **kwargs)


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP responses"""

    @app.exception_handler(BookingServiceError)
    async def handle_booking_error(request: Request, exc: BookingServiceError):
        if exc.http_status >= 500:
            logger.error(f"❌ {request.url.path}: {exc.message}")
        else:
            logger.info(f"{request.url.path} -> {exc.http_status} {exc.kind}: {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content=exc.to_dict(),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid field '{field}': {first.get('msg', 'invalid input')}" if field else "Invalid request body"
        return JSONResponse(status_code=400, content={"error": message, "kind": ErrorCategory.VALIDATION.value})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"💥 Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "kind": ErrorCategory.INTERNAL.value},
        )
