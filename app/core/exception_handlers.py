"""
Manejadores de excepciones centralizados para la aplicación FastAPI.

Todas las respuestas de error comparten la forma ``{"error": <mensaje>}``
con campos de contexto adicionales (código, ruta, timestamp, request id).
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import get_settings
from app.utils.error_handler import (
    AppException,
    DatabaseConnectionException,
    ProviderAPIException,
    RateLimitException,
    ValidationException,
)

settings = get_settings()
logger = logging.getLogger(__name__)


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")


def _error_body(request: Request, message: Any, **extra) -> Dict[str, Any]:
    body = {
        "error": message,
        "path": str(request.url.path),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": _request_id(request),
    }
    body.update({key: value for key, value in extra.items() if value is not None})
    return body


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Manejador para excepciones personalizadas de la aplicación.

    Args:
        request: Request de FastAPI
        exc: Excepción personalizada de la app

    Returns:
        JSONResponse: Respuesta JSON con error formateado
    """
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        f"App Exception: {exc.message} - Code: {exc.error_code.value} - URL: {request.url} - Details: {exc.details}",
    )

    if exc.is_critical:
        logger.critical(f"🚨 Critical error on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            request,
            exc.message,
            error_code=exc.error_code.value,
            details=exc.details if settings.DEBUG else None,
        ),
    )


async def provider_api_exception_handler(request: Request, exc: ProviderAPIException) -> JSONResponse:
    """
    Manejador específico para errores de Prodigi y Gelato.

    Args:
        request: Request de FastAPI
        exc: Excepción del proveedor

    Returns:
        JSONResponse: Respuesta JSON con información del proveedor
    """
    logger.error(
        f"{exc.provider.capitalize()} API Exception: {exc.message} - "
        f"API Code: {exc.api_response_code} - "
        f"Rate Limited: {exc.rate_limited} - "
        f"Endpoint: {exc.endpoint} - "
        f"URL: {request.url}"
    )

    headers = {}
    if exc.rate_limited and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            request,
            exc.message,
            error_code=exc.error_code.value,
            provider=exc.provider,
            provider_status=exc.api_response_code,
            retry_after=exc.retry_after,
        ),
        headers=headers,
    )


async def database_exception_handler(request: Request, exc: DatabaseConnectionException) -> JSONResponse:
    """
    Manejador específico para errores de conexión con la base de datos.
    """
    logger.critical(f"Database Connection Exception: {exc.message} - URL: {request.url}")

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, "Database unavailable", error_code=exc.error_code.value),
    )


async def validation_exception_handler(request: Request, exc: ValidationException) -> JSONResponse:
    """
    Manejador para errores de validación de datos.

    Args:
        request: Request de FastAPI
        exc: Excepción de validación

    Returns:
        JSONResponse: Respuesta JSON con detalles de validación
    """
    logger.warning(f"Validation Exception: {exc.message} - Field: {exc.field} - URL: {request.url}")

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            request,
            exc.message,
            error_code=exc.error_code.value,
            field=exc.field,
            expected_format=exc.expected_format,
        ),
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Manejador para cuerpos y parámetros que no cumplen el esquema.

    Args:
        request: Request de FastAPI
        exc: Error de validación de FastAPI

    Returns:
        JSONResponse: 400 con la lista de errores
    """
    logger.warning(f"Request validation failed - URL: {request.url} - Errors: {len(exc.errors())}")

    return JSONResponse(
        status_code=400,
        content=_error_body(
            request,
            "Invalid request data",
            details=[{"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")} for err in exc.errors()],
        ),
    )


async def rate_limit_exception_handler(request: Request, exc: RateLimitException) -> JSONResponse:
    """
    Manejador para errores de rate limiting.
    """
    logger.warning(f"Rate Limit Exception: {exc.message} - Limit: {exc.limit} - URL: {request.url}")

    headers = {
        "Retry-After": str(exc.retry_after),
        "X-Rate-Limit-Limit": str(exc.limit),
        "X-Rate-Limit-Reset": str(exc.reset_time),
    }

    return JSONResponse(
        status_code=429,
        content=_error_body(request, exc.message, error_code=exc.error_code.value, retry_after=exc.retry_after),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Manejador para HTTPException de FastAPI y Starlette.

    Args:
        request: Request de FastAPI
        exc: HTTPException

    Returns:
        JSONResponse: Respuesta JSON estandarizada
    """
    logger.warning(f"HTTP Exception: {exc.status_code} - {exc.detail} - URL: {request.url}")

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Manejador global para excepciones no capturadas.

    Args:
        request: Request de FastAPI
        exc: Excepción no manejada

    Returns:
        JSONResponse: Respuesta JSON de error interno
    """
    logger.error(
        f"Unhandled Exception: {str(exc)} - "
        f"Type: {type(exc).__name__} - "
        f"URL: {request.url} - "
        f"Traceback: {traceback.format_exc()}"
    )

    error_message = "Internal server error"
    if settings.DEBUG:
        error_message = f"{type(exc).__name__}: {str(exc)}"

    return JSONResponse(status_code=500, content=_error_body(request, error_message))


def configure_exception_handlers(app: FastAPI) -> None:
    """
    Configura todos los manejadores de excepciones de la aplicación.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando manejadores de excepciones...")

    # Manejadores específicos (orden de especificidad)
    app.add_exception_handler(ValidationException, validation_exception_handler)
    app.add_exception_handler(RateLimitException, rate_limit_exception_handler)
    app.add_exception_handler(ProviderAPIException, provider_api_exception_handler)
    app.add_exception_handler(DatabaseConnectionException, database_exception_handler)
    app.add_exception_handler(AppException, app_exception_handler)

    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # Manejador global (debe ser el último)
    app.add_exception_handler(Exception, global_exception_handler)

    logger.info("✅ Manejadores de excepciones configurados correctamente")
