"""
Sistema de manejo de errores personalizado.

Este módulo define todas las excepciones personalizadas de la aplicación
y proporciona utilidades para manejo consistente de errores.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """
    Códigos de error estandardizados para la aplicación.
    """

    # Errores generales
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Errores de APIs externas
    IQR_API_ERROR = "IQR_API_ERROR"
    IQR_AUTHENTICATION_FAILED = "IQR_AUTHENTICATION_FAILED"
    SHIPSTATION_API_ERROR = "SHIPSTATION_API_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Errores de sincronización
    SYNC_FAILED = "SYNC_FAILED"
    SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"

    # Errores de webhooks
    INVALID_WEBHOOK_SIGNATURE = "INVALID_WEBHOOK_SIGNATURE"
    INVALID_WEBHOOK_PAYLOAD = "INVALID_WEBHOOK_PAYLOAD"


class ErrorSeverity(Enum):
    """
    Niveles de severidad para errores.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AppException(Exception):
    """
    Excepción base para todas las excepciones personalizadas de la aplicación.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        is_retryable: bool = False,
    ):
        """
        Inicializa la excepción.

        Args:
            message: Mensaje de error
            error_code: Código de error estandardizado
            details: Información adicional del error
            status_code: Código HTTP asociado
            severity: Severidad del error
            is_retryable: Si la operación puede reintentarse
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.severity = severity
        self.is_retryable = is_retryable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convierte la excepción a diccionario.

        Returns:
            Dict: Representación de la excepción
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code.value,
            "details": self.details,
            "status_code": self.status_code,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        """String representation del error."""
        return f"{self.error_code.value}: {self.message}"


class IQRAPIException(AppException):
    """
    Error transitorio de la API de IQ Reseller (timeout, 5xx, página con error).
    """

    def __init__(
        self,
        message: str,
        api_response_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        """
        Inicializa la excepción de IQR.

        Args:
            message: Mensaje de error
            api_response_code: Código HTTP devuelto por IQR
            endpoint: Endpoint que falló
            **kwargs: Argumentos adicionales para AppException
        """
        severity = ErrorSeverity.HIGH if api_response_code and api_response_code >= 500 else ErrorSeverity.MEDIUM
        super().__init__(
            message=message,
            error_code=ErrorCode.IQR_API_ERROR,
            status_code=502,
            severity=severity,
            is_retryable=True,
            **kwargs,
        )
        self.api_response_code = api_response_code
        self.endpoint = endpoint
        self.details.update({"api_response_code": api_response_code, "endpoint": endpoint})


class IQRAuthenticationException(AppException):
    """
    Error de autenticación con IQR. Aborta la operación en curso.
    """

    def __init__(self, message: str, api_response_code: Optional[int] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.IQR_AUTHENTICATION_FAILED,
            status_code=502,
            severity=ErrorSeverity.HIGH,
            is_retryable=False,
            **kwargs,
        )
        self.api_response_code = api_response_code
        self.details.update({"api_response_code": api_response_code})


class ShipStationAPIException(AppException):
    """
    Excepción para errores de la API de ShipStation.
    """

    def __init__(
        self,
        message: str,
        api_response_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        rate_limited: bool = False,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        """
        Inicializa la excepción de ShipStation.

        Args:
            message: Mensaje de error
            api_response_code: Código de respuesta de ShipStation
            endpoint: Endpoint que falló
            rate_limited: Si es por rate limiting
            retry_after: Segundos para reintentar
            **kwargs: Argumentos adicionales para AppException
        """
        error_code = ErrorCode.SHIPSTATION_API_ERROR
        severity = ErrorSeverity.MEDIUM

        if rate_limited:
            error_code = ErrorCode.RATE_LIMIT_EXCEEDED
            severity = ErrorSeverity.LOW
        elif api_response_code and api_response_code >= 500:
            severity = ErrorSeverity.HIGH

        # Los 4xx (excepto 429) son errores de datos: reintentar no cambia el resultado
        is_retryable = rate_limited or api_response_code is None or api_response_code >= 500

        super().__init__(
            message=message,
            error_code=error_code,
            status_code=502,
            severity=severity,
            is_retryable=is_retryable,
            **kwargs,
        )

        self.api_response_code = api_response_code
        self.endpoint = endpoint
        self.rate_limited = rate_limited
        self.retry_after = retry_after

        self.details.update(
            {
                "api_response_code": api_response_code,
                "endpoint": endpoint,
                "rate_limited": rate_limited,
                "retry_after": retry_after,
            }
        )


class RateLimitException(ShipStationAPIException):
    """
    Respuesta 429 de ShipStation. Se atiende esperando Retry-After y reintentando una vez.
    """

    def __init__(self, message: str, retry_after: int, endpoint: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            api_response_code=429,
            endpoint=endpoint,
            rate_limited=True,
            retry_after=retry_after,
            **kwargs,
        )


class SyncException(AppException):
    """
    Excepción para errores a nivel de orquestación de la sincronización.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        sync_stats: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.SYNC_FAILED,
            status_code=500,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.operation = operation
        self.sync_stats = sync_stats or {}
        self.details.update({"operation": operation, "sync_stats": self.sync_stats})


class SyncInProgressException(AppException):
    """
    Se lanza cuando se solicita una sincronización mientras otra está en curso.
    """

    def __init__(self, message: str = "A sync run is already in progress", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.SYNC_IN_PROGRESS,
            status_code=409,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class WebhookSignatureException(AppException):
    """
    Firma HMAC del webhook ausente o inválida.
    """

    def __init__(self, message: str = "Invalid webhook signature", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_WEBHOOK_SIGNATURE,
            status_code=401,
            severity=ErrorSeverity.MEDIUM,
            **kwargs,
        )


class WebhookPayloadException(AppException):
    """
    Payload de webhook mal formado (JSON inválido o sin cuerpo esperado).
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_WEBHOOK_PAYLOAD,
            status_code=400,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


# === FUNCIONES DE UTILIDAD ===


def log_error(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Loggea un error de manera consistente.

    Args:
        exception: Excepción a loggear
        context: Contexto adicional
        level: Nivel de logging
    """
    context = context or {}

    log_data = {
        "exception_type": type(exception).__name__,
        "exception_message": str(exception),
        **context,
    }

    if isinstance(exception, AppException):
        message = f"{exception.error_code.value}: {exception.message}"
        log_data.update(
            {
                "error_code": exception.error_code.value,
                "severity": exception.severity.value,
                "is_retryable": exception.is_retryable,
            }
        )
    else:
        message = f"Unhandled exception: {type(exception).__name__}: {str(exception)}"

    logger.log(level, message, extra=log_data)


class ErrorAggregator:
    """
    Agregador de errores para procesos batch.
    """

    def __init__(self):
        """Inicializa el agregador."""
        self.errors: List[Dict[str, Any]] = []
        self.total_processed = 0
        self.start_time = datetime.now(timezone.utc)

    def add_error(self, exception: Exception, context: Optional[Dict] = None):
        """
        Agrega un error al agregador.

        Args:
            exception: Excepción a agregar
            context: Contexto adicional
        """
        self.errors.append(
            {
                "error_type": type(exception).__name__,
                "message": exception.message if isinstance(exception, AppException) else str(exception),
                "context": context or {},
            }
        )
        log_error(exception, context, logging.WARNING)

    def increment_processed(self):
        """Incrementa contador de procesados."""
        self.total_processed += 1

    def has_errors(self) -> bool:
        """Verifica si hay errores."""
        return len(self.errors) > 0

    def clear(self):
        self.errors = []
        self.total_processed = 0
        self.start_time = datetime.now(timezone.utc)

    def get_summary(self) -> Dict[str, Any]:
        """
        Obtiene resumen de errores.

        Returns:
            Dict: Resumen de errores
        """
        end_time = datetime.now(timezone.utc)
        duration = (end_time - self.start_time).total_seconds()

        return {
            "total_processed": self.total_processed,
            "error_count": len(self.errors),
            "success_count": self.total_processed - len(self.errors),
            "duration_seconds": duration,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "errors": list(self.errors),
        }
