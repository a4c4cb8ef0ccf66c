"""
Utilidades de procesamiento paralelo con concurrencia acotada.

process_in_parallel limita las tareas en vuelo con un semáforo;
process_in_batches divide la entrada en lotes secuenciales con una pausa
entre lotes (nunca después del último).
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def process_in_parallel(
    items: Sequence[T],
    processor: Callable[[T, int], Awaitable[R]],
    concurrency: int = 5,
) -> List[R]:
    """
    Procesa items en paralelo con un máximo de `concurrency` tareas en vuelo.

    Los resultados conservan el orden de entrada. Una excepción en un item
    no cancela a los demás: se re-lanza la primera luego de que todos terminen.
    Quien necesite aislar fallas por item debe capturarlas dentro de `processor`.

    Args:
        items: Items a procesar
        processor: Corrutina (item, índice) -> resultado
        concurrency: Máximo de tareas simultáneas

    Returns:
        List: Resultados en el mismo orden que items
    """
    if concurrency < 1:
        raise ValueError("concurrency debe ser al menos 1")

    semaphore = asyncio.Semaphore(concurrency)

    async def run(item: T, index: int) -> R:
        async with semaphore:
            return await processor(item, index)

    results = await asyncio.gather(*(run(item, i) for i, item in enumerate(items)), return_exceptions=True)

    for result in results:
        if isinstance(result, BaseException):
            raise result

    return list(results)


async def process_in_batches(
    items: Sequence[T],
    processor: Callable[[T, int], Awaitable[R]],
    batch_size: int,
    concurrency: int = 5,
    delay_between_batches: float = 0.5,
) -> List[R]:
    """
    Procesa items en lotes secuenciales, con concurrencia acotada dentro de cada lote.

    El lote k+1 no empieza hasta que todas las entregas del lote k terminan.

    Args:
        items: Items a procesar
        processor: Corrutina (item, índice global) -> resultado
        batch_size: Items por lote
        concurrency: Máximo de tareas simultáneas por lote
        delay_between_batches: Segundos de pausa entre lotes

    Returns:
        List: Resultados en el mismo orden que items
    """
    if batch_size < 1:
        raise ValueError("batch_size debe ser al menos 1")

    results: List[R] = []
    total_batches = (len(items) + batch_size - 1) // batch_size

    for batch_number, start in enumerate(range(0, len(items), batch_size), start=1):
        batch = items[start : start + batch_size]
        logger.debug(f"📦 Procesando lote {batch_number}/{total_batches} ({len(batch)} items)")

        batch_results = await process_in_parallel(
            batch,
            lambda item, idx, offset=start: processor(item, offset + idx),
            concurrency,
        )
        results.extend(batch_results)

        if start + batch_size < len(items) and delay_between_batches > 0:
            await asyncio.sleep(delay_between_batches)

    return results
