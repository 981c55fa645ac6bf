"""
Error taxonomy and exception handlers.

Every error leaves the API as `{"error": <message>}`, whatever raised it.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

DEFAULT_INVALID_INPUT = "Données manquantes ou invalides"


class APIError(HTTPException):
    """Base API error"""

    def __init__(self, status_code: int, detail: str, headers: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class InvalidInput(APIError):
    def __init__(self, detail: str = DEFAULT_INVALID_INPUT):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail)


class Unauthenticated(APIError):
    def __init__(self, detail: str = "Token manquant ou invalide"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, detail)


class Unauthorized(APIError):
    def __init__(self, detail: str = "Accès refusé"):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)


class NotFound(APIError):
    def __init__(self, detail: str = "Ressource non trouvée"):
        super().__init__(status.HTTP_404_NOT_FOUND, detail)


class Conflict(APIError):
    """Duplicate email/phone at the identity provider. Reported as a 400."""

    def __init__(self, detail: str):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail)


class ServerError(APIError):
    def __init__(self, detail: str = "Erreur serveur"):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, detail)


def invalid_input(message: str) -> Callable:
    """Declare the 400 message an endpoint answers with when its body fails validation."""

    def decorator(func: Callable) -> Callable:
        func.invalid_input_message = message
        return func

    return decorator


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    from auth import unauthenticated_detail

    detail = unauthenticated_detail(request)
    if detail is not None:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": detail})
    route = request.scope.get("route")
    endpoint = getattr(route, "endpoint", None)
    message = getattr(endpoint, "invalid_input_message", DEFAULT_INVALID_INPUT)
    logger.info(f"Invalid input at {request.url.path}: {len(exc.errors())} error(s)")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error at {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Erreur serveur"},
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app"""
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
