"""
Gestión del ciclo de vida de la aplicación FastAPI.

Este módulo maneja los eventos de startup y shutdown de la aplicación:
configuración de logging, validación de configuración, scheduler de
sincronización y cierre de los clientes HTTP.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import get_environment_info, get_settings, validate_required_settings
from app.core.health import reset_uptime
from app.core.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gestión del ciclo de vida de la aplicación.
    Maneja eventos de startup y shutdown de manera ordenada.

    Args:
        app: Instancia de FastAPI
    """
    # === STARTUP ===
    try:
        # 1. Configurar logging
        await startup_configure_logging()
        logger.info(f"🚀 Iniciando {get_settings().APP_NAME}...")

        # 2. Verificar configuración
        await startup_verify_configuration()

        # 3. Configurar tareas programadas
        await startup_configure_scheduled_tasks()

        reset_uptime()
        logger.info("🎉 Aplicación iniciada correctamente")

    except Exception as e:
        logger.error(f"❌ Error durante el startup: {e}")
        await shutdown_close_connections()
        sys.exit(1)

    # === YIELD (aplicación corriendo) ===
    yield

    # === SHUTDOWN ===
    logger.info("🛑 Cerrando aplicación...")

    try:
        # 1. Detener tareas programadas
        await shutdown_stop_scheduled_tasks()

        # 2. Cerrar clientes HTTP
        await shutdown_close_connections()

        logger.info("👋 Aplicación cerrada correctamente")

    except Exception as e:
        logger.error(f"❌ Error durante el shutdown: {e}")


# === FUNCIONES DE STARTUP ===


async def startup_configure_logging():
    """Configura el sistema de logging."""
    try:
        setup_logging()
        logger.info("✅ Sistema de logging configurado")
    except Exception as e:
        print(f"Error configurando logging: {e}")
        raise


async def startup_verify_configuration():
    """
    Verifica que la configuración requerida esté presente.

    Una configuración faltante es fatal: la app no arranca.
    """
    try:
        validate_required_settings()
    except ValueError as e:
        logger.error(f"Error en configuración: {e}")
        raise

    env_info = get_environment_info()
    logger.info("🔧 Configuración activa:")
    logger.info(f"   - Entorno: {env_info['environment']}")
    logger.info(f"   - IQR: {env_info['iqr_api_base_url']}")
    logger.info(f"   - ShipStation: {env_info['shipstation_api_base_url']} (store: {env_info['shipstation_store_name']})")
    logger.info(f"   - Sync: {env_info['sync']}")
    logger.info(f"   - Webhook secret: {env_info['webhook_secret']}")
    logger.info("✅ Configuración verificada")


async def startup_configure_scheduled_tasks():
    """Inicia el scheduler cuando hay un intervalo configurado."""
    settings = get_settings()
    if settings.SYNC_INTERVAL_MINUTES <= 0:
        logger.info("ℹ️ Tareas programadas deshabilitadas (SYNC_INTERVAL_MINUTES=0)")
        return

    try:
        from app.core.scheduler import get_scheduler

        await get_scheduler().start()
        logger.info("✅ Scheduler de sincronización iniciado")
    except Exception as e:
        logger.error(f"Error configurando tareas programadas: {e}")
        # No es crítico, continuar sin scheduler
        logger.warning("⚠️ Continuando sin scheduler automático")


# === FUNCIONES DE SHUTDOWN ===


async def shutdown_stop_scheduled_tasks():
    """Detiene tareas programadas."""
    try:
        from app.core.scheduler import get_scheduler

        scheduler = get_scheduler()
        if scheduler.is_running():
            await scheduler.stop()
            logger.info("✅ Scheduler detenido")

    except Exception as e:
        logger.error(f"Error deteniendo scheduler: {e}")


async def shutdown_close_connections():
    """Cierra las sesiones HTTP de los clientes externos."""
    from app.db.iqr_client import close_iqr_client, get_iqr_client
    from app.db.shipstation_client import close_shipstation_client

    try:
        # Cerrar la sesión IQR abierta antes de soltar el cliente
        await get_iqr_client().end_session()
        await close_iqr_client()
        logger.info("✅ Cliente IQR cerrado")
    except Exception as e:
        logger.error(f"Error cerrando cliente IQR: {e}")

    try:
        await close_shipstation_client()
        logger.info("✅ Cliente ShipStation cerrado")
    except Exception as e:
        logger.error(f"Error cerrando cliente ShipStation: {e}")
