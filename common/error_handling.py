"""
Error envelope and FastAPI handlers for the ledger HTTP boundary

Business rule violations are BusinessLogicError subclasses and render as 4xx.
Transient and infrastructure failures are ServiceError subclasses and render
as 5xx without internal details.
"""
import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

class ErrorDetail(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

class ErrorEnvelope(BaseModel):
    """Body of every non-2xx response"""
    success: bool = False
    error: ErrorDetail
    timestamp: float
    trace_id: Optional[str] = None
    request_id: Optional[str] = None

class ErrorCodes:
    # Identity
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Input
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_SIDE = "INVALID_SIDE"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_PAGINATION = "INVALID_PAGINATION"

    # Ledger rules
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    SELF_TRANSFER = "SELF_TRANSFER"
    BALANCE_OVERFLOW = "BALANCE_OVERFLOW"
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"

    # Infrastructure
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    DATABASE_ERROR = "DATABASE_ERROR"

BUSINESS_STATUS_CODES = {
    ErrorCodes.INSUFFICIENT_FUNDS: 400,
    ErrorCodes.SELF_TRANSFER: 400,
    ErrorCodes.INVALID_AMOUNT: 400,
    ErrorCodes.INVALID_SIDE: 400,
    ErrorCodes.INVALID_STATUS: 400,
    ErrorCodes.INVALID_PAGINATION: 400,
    ErrorCodes.BALANCE_OVERFLOW: 400,
    ErrorCodes.VALIDATION_ERROR: 400,
    ErrorCodes.FORBIDDEN: 403,
    ErrorCodes.NOT_AUTHORIZED: 403,
    ErrorCodes.GAME_NOT_FOUND: 404,
    ErrorCodes.ALREADY_RESOLVED: 409,
}

SERVICE_STATUS_CODES = {
    ErrorCodes.SERVICE_UNAVAILABLE: 503,
    ErrorCodes.DATABASE_ERROR: 503,
}

HTTP_STATUS_CODES = {
    401: ErrorCodes.UNAUTHORIZED,
    403: ErrorCodes.FORBIDDEN,
    503: ErrorCodes.SERVICE_UNAVAILABLE,
}

class BusinessLogicError(Exception):
    """Deterministic business rule violation; never retried"""
    def __init__(self, code: str, message: str, field: str = None, context: Dict[str, Any] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.field = field
        self.context = context or {}

class ServiceError(Exception):
    """Transient or infrastructure failure; nothing was committed"""
    def __init__(self, code: str, message: str, original_error: Exception = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.original_error = original_error

def create_error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    field: str = None,
    context: Dict[str, Any] = None,
) -> JSONResponse:
    """Render the error envelope, tagged with the request's trace ids"""
    envelope = ErrorEnvelope(
        error=ErrorDetail(code=code, message=message, field=field, context=context),
        timestamp=time.time(),
        trace_id=getattr(request.state, "trace_id", None),
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(envelope))

async def business_logic_exception_handler(request: Request, exc: BusinessLogicError):
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.code} - {exc.message}", extra={"context": exc.context})
    return create_error_response(
        request, BUSINESS_STATUS_CODES.get(exc.code, 400), exc.code, exc.message, exc.field, exc.context,
    )

async def service_exception_handler(request: Request, exc: ServiceError):
    # original_error stays in the log, never in the response
    logger.error(f"{request.method} {request.url.path} failed: {exc.code} - {exc.message} ({exc.original_error})")
    return create_error_response(request, SERVICE_STATUS_CODES.get(exc.code, 500), exc.code, exc.message)

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    reason = first.get("msg", "invalid value")
    logger.info(f"Invalid request to {request.url.path}: {field}: {reason}")
    return create_error_response(
        request, 400, ErrorCodes.VALIDATION_ERROR, f"Invalid value for '{field}': {reason}", field=field,
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    code = HTTP_STATUS_CODES.get(exc.status_code, ErrorCodes.INTERNAL_SERVER_ERROR)
    return create_error_response(request, exc.status_code, code, str(exc.detail))

async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return create_error_response(
        request, 500, ErrorCodes.INTERNAL_SERVER_ERROR, "An unexpected error occurred. Please try again later.",
    )

def add_error_handlers(app: FastAPI):
    app.add_exception_handler(BusinessLogicError, business_logic_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
