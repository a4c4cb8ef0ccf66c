"""
Configuración centralizada de routers para la aplicación FastAPI.

Este módulo se encarga de registrar los routers de la API,
configurar endpoints base y organizar las rutas de manera estructurada.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api.v1.endpoints.sync import router as sync_router
from app.api.v1.endpoints.webhooks import router as webhooks_router
from app.core.config import get_settings
from app.core.health import get_health_status, get_metrics_snapshot, get_readiness

logger = logging.getLogger(__name__)


def create_root_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints raíz de la aplicación.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/", tags=["Root"], summary="API Info")
    async def root():
        """
        Endpoint raíz que proporciona información básica de la API.

        Returns:
            Dict con información de la API
        """
        settings = get_settings()
        return {
            "message": settings.APP_NAME,
            "description": "Sincronización de órdenes IQ Reseller → ShipStation y tracking de vuelta",
            "version": settings.APP_VERSION,
            "status": "running",
            "documentation": "/docs" if settings.ENABLE_DOCS else "disabled",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": get_router_info()["base_paths"],
        }


def create_health_endpoints(app: FastAPI) -> None:
    """
    Crea endpoints de health check y monitoreo.

    Args:
        app: Instancia de FastAPI
    """

    @app.get("/health", tags=["Health"], summary="Health Check")
    async def health_check():
        """Responde 200 mientras el proceso esté atendiendo requests."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/health/detailed", tags=["Health"], summary="Detailed Health Check")
    async def detailed_health_check():
        """
        Verifica la conectividad con IQR y ShipStation.

        degraded (200) si uno de los servicios está caído, unhealthy (503) si ambos.
        """
        health_status = await get_health_status()
        status_code = 503 if health_status["status"] == "unhealthy" else 200
        return JSONResponse(status_code=status_code, content=health_status)

    @app.get("/ready", tags=["Health"], summary="Readiness Probe")
    async def readiness_probe():
        """
        Endpoint para readiness probe.
        Verifica que las credenciales requeridas estén configuradas.
        """
        readiness = get_readiness()
        return JSONResponse(status_code=200 if readiness["ready"] else 503, content=readiness)

    @app.get("/live", tags=["Health"], summary="Liveness Probe")
    async def liveness_probe():
        return {"alive": True}

    @app.get("/metrics", tags=["Health"], summary="Performance Metrics")
    async def metrics():
        """Tiempos por operación de sincronización y memoria del proceso."""
        return get_metrics_snapshot()


def configure_api_v1_routers(app: FastAPI) -> None:
    """
    Configura todos los routers de la API v1.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando routers de API v1...")

    # Router principal de sincronización
    app.include_router(
        sync_router,
        prefix="/api/v1/sync",
        tags=["Synchronization"],
        responses={
            409: {"description": "Sync already in progress"},
            500: {"description": "Internal server error"},
        },
    )
    logger.info("✅ Router de sincronización configurado")

    # Router de webhooks
    app.include_router(
        webhooks_router,
        prefix="/api/v1/webhooks",
        tags=["Webhooks"],
        responses={
            400: {"description": "Invalid webhook payload"},
            401: {"description": "Invalid webhook signature"},
        },
    )
    logger.info("✅ Router de webhooks configurado")


def configure_all_routers(app: FastAPI) -> None:
    """
    Configura todos los routers de la aplicación.

    Args:
        app: Instancia de FastAPI
    """
    logger.info("🔧 Configurando todos los routers...")

    # Endpoints base
    create_root_endpoints(app)
    create_health_endpoints(app)

    # Routers principales de API v1
    configure_api_v1_routers(app)

    logger.info("✅ Todos los routers configurados correctamente")


def get_router_info() -> Dict[str, Any]:
    """
    Obtiene información sobre los routers configurados.

    Returns:
        Dict con información de routers
    """
    return {
        "api_version": "v1",
        "base_paths": {
            "health": "/health",
            "health_detailed": "/health/detailed",
            "ready": "/ready",
            "live": "/live",
            "metrics": "/metrics",
            "sync": "/api/v1/sync",
            "webhooks": "/api/v1/webhooks",
        },
    }
