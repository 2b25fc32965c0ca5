"""
Domain errors and the JSON error envelope.

Every failure leaves the API as

    {"error": {"code", "message", "request_id"[, "retryable"]}, "detail": message}

so the web client and DrawbookClient can branch on ``code`` alone.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from drawbook.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class AuthenticationError(AppError):
    """No active session for a protected action. Callers should re-authenticate, not retry."""
    code = "unauthenticated"
    status_code = 401


class ForbiddenError(AppError):
    code = "forbidden"
    status_code = 403


class EntitlementError(AppError):
    """User has neither a free slot nor a paid credit left."""
    code = "no_credits"
    status_code = 402


class ProviderError(AppError):
    """Transient failure talking to an external provider. Safe for the user to retry."""
    code = "provider_error"
    status_code = 502
    retryable = True


class ShippingProviderError(ProviderError):
    code = "shipping_unavailable"


class PaymentProviderError(ProviderError):
    code = "payment_provider_error"


class WebhookSignatureError(AppError):
    code = "invalid_signature"
    status_code = 400


# Plain HTTPExceptions raised by FastAPI itself (unknown route, bad method)
_HTTP_CODES = {401: "unauthenticated", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}

logger = logging.getLogger("drawbook")


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _error_response(status_code: int, code: str, message: str, request_id: str, retryable: bool = False) -> JSONResponse:
    error = {"code": code, "message": message, "request_id": request_id}
    if retryable:
        error["retryable"] = True
    response = JSONResponse(status_code=status_code, content={"error": error, "detail": message})
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code, "error_message": exc.message},
    )
    return _error_response(exc.status_code, exc.code, exc.message, rid, exc.retryable)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _error_response(exc.status_code, code, str(exc.detail or "HTTP error"), rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _request_id_for(request)
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else "Invalid request"
    logger.info("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 422})
    return _error_response(422, "validation_error", message, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return _error_response(500, "internal_error", "Unexpected error", rid)
