"""
Motor de scheduling para la sincronización automática IQR → ShipStation.

SyncScheduler es dueño de su propio ciclo de vida (start/stop/is_running),
por lo que los tests pueden crear schedulers independientes. El flag
`enabled` permite pausar la sincronización sin detener el timer.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.config import Settings, get_settings
from app.utils.error_handler import SyncInProgressException

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Ejecuta una sincronización al iniciar y luego cada intervalo.

    Los ticks se saltan (sin contar como ejecución) cuando la sincronización
    está pausada o cuando ya hay una corrida en curso.
    """

    def __init__(
        self,
        run_sync: Optional[Callable[[], Awaitable[Any]]] = None,
        interval_seconds: Optional[float] = None,
        enabled: Optional[bool] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Inicializa el scheduler.

        Args:
            run_sync: Corrutina a ejecutar en cada tick (por defecto OrderSyncService.sync_orders)
            interval_seconds: Segundos entre ticks (por defecto SYNC_INTERVAL_MINUTES)
            enabled: Estado inicial de la sincronización (por defecto SYNC_ENABLED)
            settings: Configuración
        """
        self.settings = settings or get_settings()
        self._run_sync = run_sync
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else self.settings.SYNC_INTERVAL_MINUTES * 60
        )
        self.enabled = self.settings.SYNC_ENABLED if enabled is None else enabled

        self._task: Optional[asyncio.Task] = None
        self._running = False

        self.stats = {
            "ticks": 0,
            "runs": 0,
            "skipped_paused": 0,
            "skipped_in_progress": 0,
            "failed_runs": 0,
            "last_run_time": None,
            "last_error": None,
        }

    def _get_run_sync(self) -> Callable[[], Awaitable[Any]]:
        if self._run_sync is None:
            from app.services.order_sync_service import get_order_sync_service

            self._run_sync = get_order_sync_service().sync_orders
        return self._run_sync

    async def start(self) -> None:
        """Inicia el loop del scheduler."""
        if self._running:
            logger.warning("Scheduler ya está ejecutándose")
            return

        if self.interval_seconds <= 0:
            logger.info("Scheduler desactivado (intervalo 0)")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"🕒 Scheduler iniciado: cada {self.interval_seconds / 60:g} minutos "
            f"(sync {'activa' if self.enabled else 'pausada'})"
        )

    async def stop(self) -> None:
        """Detiene el loop y espera a que la tarea termine."""
        if not self._running:
            logger.info("Scheduler no está ejecutándose")
            return

        logger.info("🛑 Deteniendo scheduler")
        self._running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._task = None
        logger.info("✅ Scheduler detenido correctamente")

    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def pause(self) -> None:
        """Pausa la sincronización programada sin detener el timer."""
        self.enabled = False
        logger.info("⏸️ Sincronización programada pausada")

    def resume(self) -> None:
        self.enabled = True
        logger.info("▶️ Sincronización programada reanudada")

    async def _loop(self) -> None:
        # El primer tick corre inmediatamente
        while self._running:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> bool:
        """
        Ejecuta un tick del scheduler.

        Returns:
            bool: True si se ejecutó una sincronización
        """
        self.stats["ticks"] += 1

        if not self.enabled:
            self.stats["skipped_paused"] += 1
            logger.debug("Sincronización programada omitida - sync pausada")
            return False

        try:
            await self._get_run_sync()()
        except SyncInProgressException:
            self.stats["skipped_in_progress"] += 1
            logger.info("⏭️ Tick omitido: ya hay una sincronización en curso")
            return False
        except Exception as e:
            # El scheduler sigue ejecutándose a pesar del error
            self.stats["failed_runs"] += 1
            self.stats["last_error"] = str(e)
            logger.error(f"❌ Error en sincronización programada: {e}")

        self.stats["runs"] += 1
        self.stats["last_run_time"] = datetime.now(UTC).isoformat()
        return True

    def get_status(self) -> Dict[str, Any]:
        """
        Obtiene el estado actual del scheduler.

        Returns:
            Dict: Información del estado
        """
        return {
            "running": self.is_running(),
            "enabled": self.enabled,
            "interval_minutes": self.interval_seconds / 60,
            **self.stats,
        }


# Instancia global usada por la aplicación
_scheduler: Optional[SyncScheduler] = None


def get_scheduler() -> SyncScheduler:
    """
    Obtiene el scheduler de la aplicación.

    Returns:
        SyncScheduler: Instancia compartida
    """
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler
