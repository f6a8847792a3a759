"""
Error handling and logging utilities
Every error leaves the API as {"success": false, "error": <message>}
"""
import logging
import os
import traceback
from typing import Optional, Dict, Any
from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import sentry_sdk

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception"""
    def __init__(self, message: str, status_code: int = 500, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(AppException):
    """Validation error exception"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=400, details=details)


class NotFoundException(AppException):
    """Resource not found exception"""
    def __init__(self, message: str = "Recurso não encontrado", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=404, details=details)


class ConflictException(AppException):
    """Resource conflict exception"""
    def __init__(self, message: str = "Registro já existe", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=409, details=details)


def error_response(status_code: int, message: str, details: Optional[Dict[str, Any]] = None, headers=None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def log_error(error: Exception, request: Optional[Request] = None, context: Optional[Dict[str, Any]] = None):
    """
    Log error with context and send to Sentry if configured
    """
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if request:
        error_context.update({
            "path": request.url.path,
            "method": request.method,
            "client": request.client.host if request.client else None,
        })

    if context:
        error_context.update(context)

    logger.error(f"Error occurred: {error_context}", exc_info=error)

    # capture_exception is a no-op when sentry_sdk.init was never called
    sentry_sdk.capture_exception(error)


async def app_exception_handler(request: Request, exc: AppException):
    """Handle application exceptions"""
    if exc.status_code >= 500:
        log_error(exc, request)
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

    return error_response(exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTPException raised by dependencies and routes"""
    message = exc.detail if isinstance(exc.detail, str) else "Erro na requisição"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation exceptions with better formatting"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    logger.info(f"Validation error on {request.url.path}: {errors}")

    return error_response(status.HTTP_400_BAD_REQUEST, "Dados inválidos", {"errors": errors})


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    log_error(exc, request)

    # Don't expose internal errors in production
    details = None
    if os.getenv("ENVIRONMENT", "development") == "development":
        details = {
            "type": type(exc).__name__,
            "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }

    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro interno do servidor", details)
