"""
Global error handling middleware.

WHAT: Translate exceptions to appropriate HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers keyed on the business exception category
"""

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..utils.exceptions import (
    CONFLICT,
    EXPIRY,
    INTEGRITY,
    INTERNAL,
    NOT_FOUND,
    VALIDATION,
    BusinessException,
)
from ..utils.logger import get_logger
from ..utils.timeutil import isoformat_z, utcnow

logger = get_logger(__name__)

CATEGORY_STATUS = {
    VALIDATION: status.HTTP_400_BAD_REQUEST,
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CONFLICT: status.HTTP_409_CONFLICT,
    INTEGRITY: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EXPIRY: status.HTTP_410_GONE,
    INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_body(code: str, message: str, details=None, category: str = INTERNAL) -> dict:
    return {
        "error": code,
        "category": category,
        "message": message,
        "details": details,
        "timestamp": isoformat_z(utcnow()),
    }


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    # Clean up error details to be JSON serializable
    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("VALIDATION_ERROR", "Request validation failed", cleaned_errors, VALIDATION),
    )


async def business_exception_handler(request: Request, exc: BusinessException):
    """
    Handle BusinessException.

    WHAT: Domain error raised by an engine
    WHY: Caller gets a tagged, self-describing error
    HOW: Status code from the exception category
    """
    status_code = CATEGORY_STATUS.get(exc.category, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"Business exception: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Business exception: {exc.code} - {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={**exc.to_dict(), "timestamp": isoformat_z(utcnow())},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Anything unexpected becomes a generic 500 without internals."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", "An unexpected error occurred"),
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    logger.info("Exception handlers registered")
