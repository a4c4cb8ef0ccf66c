"""
Manejadores de excepciones centralizados para la aplicación FastAPI.

Este módulo define los manejadores de excepciones personalizados y globales,
proporcionando respuestas consistentes y logging apropiado para cada tipo de error.
"""

import logging
import traceback
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import get_settings
from app.utils.error_handler import (
    AppException,
    ErrorSeverity,
    ShipStationAPIException,
    SyncException,
)

logger = logging.getLogger(__name__)


def _base_content(request: Request) -> dict:
    return {
        "error": True,
        "path": str(request.url.path),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("X-Request-ID"),
    }


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

    if exc.severity == ErrorSeverity.CRITICAL:
        logger.critical(f"🚨 Critical error on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **_base_content(request),
            "error_type": "application_error",
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details if get_settings().DEBUG else None,
        },
    )


async def sync_exception_handler(request: Request, exc: SyncException) -> JSONResponse:
    """
    Manejador específico para errores de sincronización.

    Args:
        request: Request de FastAPI
        exc: Excepción de sincronización

    Returns:
        JSONResponse: Respuesta JSON con información de error de sync
    """
    logger.error(f"Sync Exception: {exc.message} - Operation: {exc.operation} - URL: {request.url}")

    if exc.sync_stats:
        logger.info(f"Sync Stats: {exc.sync_stats}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **_base_content(request),
            "error_type": "synchronization_error",
            "error_code": exc.error_code.value,
            "message": exc.message,
            "operation": exc.operation,
            "sync_stats": exc.sync_stats,
            "retry_suggested": exc.is_retryable,
        },
    )


async def shipstation_api_exception_handler(request: Request, exc: ShipStationAPIException) -> JSONResponse:
    """
    Manejador específico para errores de la API de ShipStation.

    Args:
        request: Request de FastAPI
        exc: Excepción de ShipStation API

    Returns:
        JSONResponse: Respuesta JSON con información del error de ShipStation
    """
    logger.error(
        f"ShipStation API Exception: {exc.message} - "
        f"API Code: {exc.api_response_code} - "
        f"Rate Limited: {exc.rate_limited} - "
        f"URL: {request.url}"
    )

    # Headers adicionales para rate limiting
    headers = {}
    if exc.rate_limited and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **_base_content(request),
            "error_type": "shipstation_api_error",
            "error_code": exc.error_code.value,
            "message": exc.message,
            "shipstation_response_code": exc.api_response_code,
            "rate_limited": exc.rate_limited,
            "retry_after": exc.retry_after,
            "endpoint": exc.endpoint,
        },
        headers=headers,
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Manejador para cuerpos o parámetros que no validan contra los modelos Pydantic."""
    logger.warning(f"Request Validation Error: {exc.errors()} - URL: {request.url}")

    return JSONResponse(
        status_code=422,
        content={
            **_base_content(request),
            "error_type": "validation_error",
            "message": "Invalid request",
            "errors": [
                {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
                for error in exc.errors()
            ],
        },
    )


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Manejador para HTTPException de Starlette/FastAPI.
    """
    logger.warning(f"HTTP Exception: {exc.status_code} - {exc.detail} - URL: {request.url}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **_base_content(request),
            "error_type": "http_error",
            "status_code": exc.status_code,
            "message": exc.detail,
        },
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

    debug = get_settings().DEBUG
    # Respuesta genérica (sin exponer detalles internos)
    error_message = f"{type(exc).__name__}: {str(exc)}" if debug else "Internal server error occurred"

    return JSONResponse(
        status_code=500,
        content={
            **_base_content(request),
            "error_type": "internal_server_error",
            "message": error_message,
            "traceback": traceback.format_exc() if debug else None,
        },
    )


def configure_exception_handlers(app: FastAPI) -> None:
    """
    Configura todos los manejadores de excepciones de la aplicación.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando manejadores de excepciones...")

    # Manejadores específicos (orden de especificidad)
    app.add_exception_handler(SyncException, sync_exception_handler)
    app.add_exception_handler(ShipStationAPIException, shipstation_api_exception_handler)
    app.add_exception_handler(AppException, app_exception_handler)

    # Manejadores HTTP estándar
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)

    # Manejador global (debe ser el último)
    app.add_exception_handler(Exception, global_exception_handler)

    logger.info("✅ Manejadores de excepciones configurados correctamente")
