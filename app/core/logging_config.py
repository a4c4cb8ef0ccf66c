"""
Configuración del sistema de logging.

Este módulo configura el logging del conector con:
- Handler de consola (con colores en modo debug)
- Archivo rotativo detallado y archivo separado de errores
- Archivo JSON estructurado en producción
- Helpers para operaciones de sync, llamadas a APIs y webhooks
"""

import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import Settings, get_settings

# Atributos estándar de LogRecord que no se consideran "extra"
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "taskName",
    }
)


class ColoredFormatter(logging.Formatter):
    """
    Formatter que colorea el nivel de log cuando la salida es una terminal.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Verde
        "WARNING": "\033[33m",  # Amarillo
        "ERROR": "\033[31m",  # Rojo
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record):
        formatted = super().format(record)

        if hasattr(sys.stderr, "isatty") and sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
            reset = self.COLORS["RESET"]
            formatted = formatted.replace(record.levelname, f"{color}{record.levelname}{reset}", 1)

        return formatted


class StructuredFormatter(logging.Formatter):
    """
    Formatter para logging estructurado en JSON (una línea por evento).
    """

    def format(self, record):
        """
        Formatea el record como JSON.

        Args:
            record: LogRecord a formatear

        Returns:
            str: Línea JSON
        """
        settings = get_settings()

        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "app_name": settings.APP_NAME,
            "app_version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {
            key: value for key, value in record.__dict__.items() if key not in _RESERVED_RECORD_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class SyncOperationFilter(logging.Filter):
    """
    Marca los logs provenientes de módulos de sincronización.
    """

    SYNC_MODULES = ("sync", "iqr", "shipstation", "webhook", "tracking")

    def filter(self, record):
        if any(module in record.name.lower() for module in self.SYNC_MODULES):
            record.operation_type = "sync"
        return True


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configura el sistema de logging completo de la aplicación.

    Args:
        settings: Configuración a usar (por defecto la global)
    """
    settings = settings or get_settings()

    if settings.LOG_FILE_PATH:
        Path(settings.LOG_FILE_PATH).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(get_logging_configuration(settings))

    root_logger = logging.getLogger()
    sync_filter = SyncOperationFilter()
    for handler in root_logger.handlers:
        handler.addFilter(sync_filter)

    configure_specific_loggers(settings)

    logger = logging.getLogger(__name__)
    logger.info(f"Sistema de logging configurado - Nivel: {settings.LOG_LEVEL}")
    if settings.LOG_FILE_PATH:
        logger.info(f"Logs guardándose en: {settings.LOG_FILE_PATH}")


def get_logging_configuration(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Genera la configuración de logging para dictConfig.

    Returns:
        Dict: Configuración de logging
    """
    settings = settings or get_settings()

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": settings.LOG_FORMAT,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "colored": {
                "()": ColoredFormatter,
                "format": settings.LOG_FORMAT,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {"()": StructuredFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.LOG_LEVEL,
                "formatter": "colored" if settings.DEBUG else "standard",
                "stream": "ext://sys.stdout",
            }
        },
        "loggers": {
            "uvicorn.access": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "uvicorn.error": {"level": "INFO", "handlers": ["console"], "propagate": False},
        },
        "root": {"level": settings.LOG_LEVEL, "handlers": ["console"]},
    }

    if settings.LOG_FILE_PATH:
        max_bytes = settings.LOG_MAX_SIZE_MB * 1024 * 1024
        log_path = settings.LOG_FILE_PATH
        base_path = log_path[:-4] if log_path.endswith(".log") else log_path

        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": settings.LOG_LEVEL,
            "formatter": "detailed",
            "filename": log_path,
            "maxBytes": max_bytes,
            "backupCount": settings.LOG_BACKUP_COUNT,
            "encoding": "utf-8",
        }
        config["handlers"]["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "detailed",
            "filename": f"{base_path}_errors.log",
            "maxBytes": max_bytes,
            "backupCount": settings.LOG_BACKUP_COUNT,
            "encoding": "utf-8",
        }
        config["root"]["handlers"].extend(["file", "error_file"])

        if settings.is_production:
            config["handlers"]["json_file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "INFO",
                "formatter": "json",
                "filename": f"{base_path}.json",
                "maxBytes": max_bytes,
                "backupCount": settings.LOG_BACKUP_COUNT,
                "encoding": "utf-8",
            }
            config["root"]["handlers"].append("json_file")

    return config


def configure_specific_loggers(settings: Optional[Settings] = None) -> None:
    """
    Ajusta niveles de loggers propios y de librerías externas.
    """
    settings = settings or get_settings()

    logging.getLogger("app.sync").setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    logging.getLogger("app.webhooks").setLevel(logging.INFO)
    logging.getLogger("app.db").setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    for logger_name in ("aiohttp.access", "aiohttp.client", "httpx", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def log_sync_operation(operation: str, service: str, **kwargs):
    """
    Logger específico para operaciones de sincronización.

    Args:
        operation: Tipo de operación (start, complete, error...)
        service: Servicio involucrado (iqr, shipstation, orders, tracking)
        **kwargs: Datos adicionales
    """
    logger = logging.getLogger("app.sync.operation")

    extra_data = {
        "sync_operation": operation,
        "service": service,
        "sync_timestamp": datetime.now(timezone.utc).isoformat(),
        **kwargs,
    }

    level = logging.ERROR if operation == "error" else logging.INFO
    logger.log(level, f"Sync operation: {operation} on {service}", extra=extra_data)


def log_api_call(method: str, url: str, status_code: int, duration: float, **kwargs):
    """
    Logger específico para llamadas a APIs externas.

    Args:
        method: Método HTTP
        url: URL de la API
        status_code: Código de respuesta
        duration: Duración en segundos
        **kwargs: Datos adicionales
    """
    logger = logging.getLogger("app.api.call")

    extra_data = {
        "method": method,
        "url": url,
        "status_code": status_code,
        "duration_ms": round(duration * 1000, 2),
        **kwargs,
    }

    if 200 <= status_code < 300:
        level = logging.DEBUG
    elif 400 <= status_code < 500:
        level = logging.WARNING
    else:
        level = logging.ERROR

    logger.log(
        level,
        f"API call: {method} {url} -> {status_code} ({duration * 1000:.1f}ms)",
        extra=extra_data,
    )


def log_webhook_received(resource_type: str, source: str = "shipstation", **kwargs):
    """
    Logger específico para webhooks recibidos.

    Args:
        resource_type: Tipo de evento del webhook
        source: Plataforma que envía el webhook
        **kwargs: Datos adicionales
    """
    logger = logging.getLogger("app.webhooks.received")

    extra_data = {
        "resource_type": resource_type,
        "webhook_source": source,
        "webhook_timestamp": datetime.now(timezone.utc).isoformat(),
        **kwargs,
    }

    logger.info(f"Webhook received: {resource_type} from {source}", extra=extra_data)
