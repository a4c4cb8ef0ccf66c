"""
Endpoints para control de sincronización manual y programada.

Este módulo define los endpoints de sincronización IQR → ShipStation,
el polling de tracking, el control del scheduler y el historial de actividad.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from app.api.v1.schemas.sync_schemas import ActivityStats, SyncRequest, SyncResult, TrackingPollResult
from app.core.activity_tracker import ActivityTracker, get_activity_tracker
from app.core.scheduler import SyncScheduler, get_scheduler
from app.services.order_sync_service import OrderSyncService, get_order_sync_service
from app.services.tracking_sync_service import TrackingSyncService, get_tracking_sync_service

logger = logging.getLogger(__name__)

# Crear router
router = APIRouter()

# Singletons de parámetros para evitar B008
DEFAULT_SYNC_BODY = Body(default=None)
DEFAULT_QUERY_SINCE = Query(default=None, description="Envíos creados desde esta fecha (por defecto últimas 24h)")


# === ENDPOINTS DE SINCRONIZACIÓN ===


@router.post(
    "/orders",
    response_model=SyncResult,
    status_code=status.HTTP_200_OK,
    summary="Sincronizar órdenes IQR → ShipStation",
    description="Ejecuta una sincronización bajo demanda; responde 409 si ya hay una en curso",
)
async def sync_orders_endpoint(
    sync_request: Optional[SyncRequest] = DEFAULT_SYNC_BODY,
    service: OrderSyncService = Depends(get_order_sync_service),
) -> SyncResult:
    """
    Ejecuta una sincronización de órdenes.

    Las fallas por orden se devuelven en `errors`; solo los errores de
    orquestación (p. ej. IQR inaccesible) terminan en una respuesta de error.

    Returns:
        SyncResult: Conteos y errores por orden
    """
    logger.info(f"🚀 Manual sync triggered: {sync_request.model_dump(exclude_none=True) if sync_request else {}}")
    return await service.sync_orders(sync_request)


@router.get("/status", summary="Estado del orquestador de sincronización")
async def get_sync_status(service: OrderSyncService = Depends(get_order_sync_service)) -> Dict[str, Any]:
    return service.get_status()


@router.post(
    "/tracking",
    response_model=TrackingPollResult,
    summary="Polling de tracking ShipStation → IQR",
    description="Alternativa a los webhooks: trae envíos recientes y escribe el tracking en IQR",
)
async def poll_tracking_endpoint(
    since: Optional[datetime] = DEFAULT_QUERY_SINCE,
    service: TrackingSyncService = Depends(get_tracking_sync_service),
) -> TrackingPollResult:
    """
    Escribe en IQR el tracking de los envíos creados desde `since`.

    Returns:
        TrackingPollResult: Envíos encontrados, actualizados, omitidos y fallidos
    """
    return await service.poll_for_shipments(since)


@router.get("/activity", response_model=ActivityStats, summary="Historial de actividad")
async def get_activity(tracker: ActivityTracker = Depends(get_activity_tracker)) -> ActivityStats:
    """Estadísticas de las últimas 24 horas, totales y actividad reciente."""
    return tracker.get_stats()


# === ENDPOINTS DEL SCHEDULER ===


@router.get("/scheduler", summary="Estado del scheduler")
async def get_scheduler_status(scheduler: SyncScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return scheduler.get_status()


@router.post("/scheduler/start", summary="Iniciar scheduler")
async def start_scheduler(scheduler: SyncScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    await scheduler.start()
    return scheduler.get_status()


@router.post("/scheduler/stop", summary="Detener scheduler")
async def stop_scheduler(scheduler: SyncScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    await scheduler.stop()
    return scheduler.get_status()


@router.post("/scheduler/pause", summary="Pausar la sincronización programada")
async def pause_scheduler(scheduler: SyncScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    """
    Pausa la sincronización sin detener el timer.

    Los ticks siguientes se omiten hasta llamar a /scheduler/resume.
    """
    scheduler.pause()
    return scheduler.get_status()


@router.post("/scheduler/resume", summary="Reanudar la sincronización programada")
async def resume_scheduler(scheduler: SyncScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    scheduler.resume()
    return scheduler.get_status()
