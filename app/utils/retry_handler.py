"""
Sistema de manejo de reintentos con backoff exponencial.

Este módulo implementa la política de reintentos usada por las llamadas salientes:
backoff exponencial (duplicando), delay máximo, jitter positivo de hasta 30%
y re-lanzamiento del último error al agotar los reintentos.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from app.core.config import Settings, get_settings
from app.utils.error_handler import AppException

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fracción máxima del delay agregada como jitter
MAX_JITTER_RATIO = 0.3


class RetryPolicy:
    """
    Política de reintentos configurable.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter_ratio: float = MAX_JITTER_RATIO,
        retry_on: Optional[List[Type[Exception]]] = None,
        stop_on: Optional[List[Type[Exception]]] = None,
    ):
        """
        Inicializa la política de reintentos.

        Args:
            max_retries: Reintentos después del primer intento
            initial_delay: Delay del primer reintento en segundos
            max_delay: Delay máximo (antes del jitter) en segundos
            jitter_ratio: Fracción máxima de jitter positivo
            retry_on: Excepciones en las que reintentar (por defecto todas)
            stop_on: Excepciones que detienen inmediatamente
        """
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter_ratio = jitter_ratio
        self.retry_on = retry_on or [Exception]
        self.stop_on = stop_on or []

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """
        Determina si debe reintentar la operación.

        Args:
            exception: Excepción que ocurrió
            attempt: Número de intento actual (empieza en 0)

        Returns:
            bool: True si debe reintentar
        """
        if attempt >= self.max_retries:
            return False

        if any(isinstance(exception, stop_exc) for stop_exc in self.stop_on):
            return False

        # Las excepciones propias declaran si son reintentables
        if isinstance(exception, AppException):
            return exception.is_retryable

        return any(isinstance(exception, retry_exc) for retry_exc in self.retry_on)

    def base_delay(self, attempt: int) -> float:
        """Delay sin jitter: initial * 2^attempt, limitado a max_delay."""
        return min(self.initial_delay * (2**attempt), self.max_delay)

    def calculate_delay(self, attempt: int) -> float:
        """
        Calcula el delay antes del siguiente intento.

        Args:
            attempt: Número de intento que falló (empieza en 0)

        Returns:
            float: Segundos a esperar
        """
        delay = self.base_delay(attempt)
        return delay + random.uniform(0, self.jitter_ratio * delay)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    policy: Optional[RetryPolicy] = None,
    operation: str = "operation",
) -> T:
    """
    Ejecuta una corrutina con reintentos y backoff exponencial.

    El delay del intento n es min(initial * 2^n, max) más un jitter aleatorio
    de hasta 30%. Al agotar los reintentos se re-lanza el último error.

    Args:
        fn: Función sin argumentos que devuelve un awaitable
        max_retries: Reintentos después del primer intento
        initial_delay: Delay inicial en segundos
        max_delay: Delay máximo en segundos
        policy: Política explícita (ignora los parámetros anteriores)
        operation: Nombre para logging

    Returns:
        Resultado de fn
    """
    policy = policy or RetryPolicy(max_retries=max_retries, initial_delay=initial_delay, max_delay=max_delay)

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not policy.should_retry(e, attempt):
                if attempt > 0:
                    logger.warning(f"❌ {operation} failed after {attempt + 1} attempts: {e}")
                raise

            delay = policy.calculate_delay(attempt)
            logger.info(
                f"🔄 Retry {attempt + 1}/{policy.max_retries} for {operation} in {delay:.2f}s",
                extra={"exception": str(e), "delay": delay},
            )
            await asyncio.sleep(delay)
            attempt += 1


class RetryHandler:
    """
    Manejador de reintentos con métricas por operación.
    """

    def __init__(self, name: str, retry_policy: Optional[RetryPolicy] = None):
        """
        Inicializa el manejador de reintentos.

        Args:
            name: Nombre identificativo del handler
            retry_policy: Política de reintentos
        """
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = self._empty_metrics()

    @staticmethod
    def _empty_metrics() -> Dict[str, Any]:
        return {
            "total_calls": 0,
            "total_successes": 0,
            "total_failures": 0,
            "avg_duration": 0.0,
        }

    async def execute(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Ejecuta una corrutina aplicando la política de reintentos.

        Args:
            func: Corrutina a ejecutar
            *args: Argumentos posicionales
            **kwargs: Argumentos con nombre

        Returns:
            Resultado de la función

        Raises:
            Exception: La última excepción si todos los reintentos fallan
        """
        self.metrics["total_calls"] += 1
        start_time = time.time()

        try:
            result = await retry_with_backoff(
                lambda: func(*args, **kwargs),
                policy=self.retry_policy,
                operation=self.name,
            )
        except Exception:
            self.metrics["total_failures"] += 1
            raise

        self._record_success(time.time() - start_time)
        return result

    def _record_success(self, duration: float):
        self.metrics["total_successes"] += 1
        total_ops = self.metrics["total_successes"]
        self.metrics["avg_duration"] = (self.metrics["avg_duration"] * (total_ops - 1) + duration) / total_ops

    def get_metrics(self) -> Dict[str, Any]:
        """
        Obtiene métricas del handler.

        Returns:
            Dict: Métricas actuales
        """
        total = self.metrics["total_calls"]
        success_rate = (self.metrics["total_successes"] / total * 100) if total > 0 else 0

        return {
            **self.metrics,
            "success_rate": round(success_rate, 2),
            "handler_name": self.name,
        }

    def reset_metrics(self):
        """Reinicia las métricas."""
        self.metrics = self._empty_metrics()


def create_shipstation_retry_handler(settings: Optional[Settings] = None) -> RetryHandler:
    """
    Crea el handler usado para la entrega de órdenes a ShipStation.

    Returns:
        RetryHandler: Handler configurado desde Settings
    """
    settings = settings or get_settings()
    retry_policy = RetryPolicy(
        max_retries=settings.SYNC_MAX_RETRIES,
        initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
        max_delay=settings.RETRY_MAX_DELAY_SECONDS,
    )
    return RetryHandler(name="shipstation_create_order", retry_policy=retry_policy)
