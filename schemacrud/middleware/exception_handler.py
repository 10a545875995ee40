"""
Exception Handlers & Request Logging Middleware
"""
import traceback
from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from schemacrud.core.exceptions import CRUDError


async def crud_exception_handler(request: Request, exc: CRUDError):
    """Map engine errors to their HTTP status with structured context."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.error_type}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc.error_type}: {exc.message}")

    hide = exc.status_code >= 500 and not request.app.state.debug
    message = "An unexpected error occurred" if hide else exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": message,
            "data": {"type": exc.error_type} if hide else exc.to_dict(),
            "errors": [message],
        },
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return structured error."""
    logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": "Internal server error",
            "errors": [str(exc)] if request.app.state.debug else ["An unexpected error occurred"],
        },
    )


async def request_logging_middleware(request: Request, call_next):
    """Log all incoming requests."""
    logger.info(f"{request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(f"{request.method} {request.url.path} → {response.status_code}")
    return response
