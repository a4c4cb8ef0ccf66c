"""
Sistema de health checks para monitoreo de servicios.

Este módulo verifica la conectividad con IQR y ShipStation y arma las
respuestas de /health/detailed, /ready y /metrics.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.config import Settings, get_settings
from app.core.metrics import get_memory_usage, get_performance_monitor
from app.db.iqr_client import IQRClient
from app.db.shipstation_client import ShipStationClient

logger = logging.getLogger(__name__)

# Variable global para tracking de uptime
_app_start_time = datetime.now(timezone.utc)


async def run_health_check_with_timeout(
    service_name: str, check_func: Callable[[], Awaitable[bool]], timeout: float
) -> Dict[str, Any]:
    """
    Ejecuta una verificación de salud individual con timeout específico.

    Args:
        service_name: Nombre del servicio
        check_func: Función de verificación
        timeout: Timeout en segundos

    Returns:
        Dict: Resultado de la verificación ("up" o "down" con latencia)
    """
    start_time = time.time()

    try:
        result = await asyncio.wait_for(check_func(), timeout=timeout)
        latency_ms = (time.time() - start_time) * 1000
        return {"status": "up" if result else "down", "latency_ms": round(latency_ms, 2)}

    except asyncio.TimeoutError:
        latency_ms = (time.time() - start_time) * 1000
        logger.warning(f"Health check timeout for {service_name} after {timeout}s")
        return {"status": "down", "error": f"Health check timeout after {timeout}s", "latency_ms": round(latency_ms, 2)}

    except Exception as e:
        latency_ms = (time.time() - start_time) * 1000
        logger.error(f"Health check failed for {service_name}: {e}")
        return {"status": "down", "error": str(e), "latency_ms": round(latency_ms, 2)}


async def check_iqr_health(settings: Optional[Settings] = None) -> bool:
    """
    Verifica que IQR acepte la API key creando y cerrando una sesión.

    Usa un cliente propio para no cerrar la sesión de una sincronización en curso.
    """
    client = IQRClient(settings)
    try:
        await client.authenticate()
        await client.end_session()
        return True
    finally:
        await client.close()


async def check_shipstation_health(settings: Optional[Settings] = None) -> bool:
    """Verifica las credenciales de ShipStation listando las tiendas."""
    client = ShipStationClient(settings)
    try:
        await client.list_stores()
        return True
    finally:
        await client.close()


def compute_overall_status(services: Dict[str, str]) -> str:
    """
    healthy si todo responde, unhealthy si todo está caído, degraded en otro caso.
    """
    down = [name for name, status in services.items() if status != "up"]
    if not down:
        return "healthy"
    if len(down) == len(services):
        return "unhealthy"
    return "degraded"


async def get_health_status(
    settings: Optional[Settings] = None,
    iqr_check: Optional[Callable[[], Awaitable[bool]]] = None,
    shipstation_check: Optional[Callable[[], Awaitable[bool]]] = None,
) -> Dict[str, Any]:
    """
    Obtiene el estado de salud detallado de los servicios externos.

    Returns:
        Dict: status (healthy/degraded/unhealthy), uptime, versión y estado por servicio
    """
    settings = settings or get_settings()
    start_time = time.time()

    checks = {
        "iqr": iqr_check or (lambda: check_iqr_health(settings)),
        "shipstation": shipstation_check or (lambda: check_shipstation_health(settings)),
    }

    # Ejecutar verificaciones en paralelo
    results = await asyncio.gather(
        *(
            run_health_check_with_timeout(name, check, settings.HEALTH_CHECK_TIMEOUT)
            for name, check in checks.items()
        )
    )
    details = dict(zip(checks.keys(), results))
    services = {name: result["status"] for name, result in details.items()}
    status = compute_overall_status(services)

    logger.info(
        f"Health check completed: {status}",
        extra={"status": status, "duration_ms": round((time.time() - start_time) * 1000, 2)},
    )

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": get_uptime_seconds(),
        "version": settings.APP_VERSION,
        "services": services,
        "details": details,
    }


def get_readiness(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Listo para recibir tráfico si las credenciales requeridas están configuradas."""
    settings = settings or get_settings()
    if settings.IQR_API_KEY and settings.SHIPSTATION_API_KEY:
        return {"ready": True}
    return {"ready": False, "reason": "Missing configuration"}


def get_metrics_snapshot() -> Dict[str, Any]:
    """
    Obtiene métricas de rendimiento y memoria del proceso.

    Returns:
        Dict: timestamp, uptime, memoria y estadísticas por operación
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": get_uptime_seconds(),
        "memory": get_memory_usage(),
        "operations": get_performance_monitor().get_all_stats(),
    }


def get_uptime_seconds() -> float:
    return round((datetime.now(timezone.utc) - _app_start_time).total_seconds(), 3)


def get_uptime_info() -> Dict[str, Any]:
    """
    Obtiene información de uptime de la aplicación.

    Returns:
        Dict: Información de uptime
    """
    current_time = datetime.now(timezone.utc)
    uptime_delta = current_time - _app_start_time

    return {
        "start_time": _app_start_time.isoformat(),
        "current_time": current_time.isoformat(),
        "uptime_seconds": int(uptime_delta.total_seconds()),
        "uptime_human": format_uptime(uptime_delta),
    }


def format_uptime(uptime_delta: timedelta) -> str:
    """
    Formatea el uptime en formato legible.

    Args:
        uptime_delta: Delta de tiempo de uptime

    Returns:
        str: Uptime formateado
    """
    days = uptime_delta.days
    hours, remainder = divmod(uptime_delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")

    return " ".join(parts)


def reset_uptime() -> None:
    """Reinicia el contador de uptime (se llama al iniciar la app)."""
    global _app_start_time
    _app_start_time = datetime.now(timezone.utc)
