"""
Primitiva single-flight para corrutinas.

Colapsa N llamadas concurrentes a la misma operación en una sola ejecución:
la primera llamada crea la tarea y las demás esperan su resultado.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Comparte una única ejecución en vuelo entre todos los llamadores.

    Al terminar (con éxito o error) el slot se libera, de modo que la
    siguiente llamada dispara una nueva ejecución.
    """

    def __init__(self, name: str = "operation"):
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def do(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Ejecuta fn, o espera la ejecución que ya está en vuelo.

        Args:
            fn: Corrutina sin argumentos

        Returns:
            Resultado compartido de la ejecución
        """
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(fn())
            self._task.add_done_callback(self._release)
        else:
            logger.debug(f"{self.name} en curso, esperando resultado compartido")

        # shield: cancelar a un llamador no cancela la ejecución compartida
        return await asyncio.shield(self._task)

    async def wait(self) -> None:
        """Espera a que termine la ejecución en vuelo, si la hay, sin propagar su error."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])

    def _release(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        # Marca la excepción como recuperada si ningún llamador la consumió
        if not task.cancelled():
            task.exception()
