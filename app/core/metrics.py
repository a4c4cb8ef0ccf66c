"""
Performance monitoring for sync operations.

This module tracks timings of named operations (full sync, fetch, dispatch)
in memory and reports per-operation statistics plus process memory usage
for the /metrics endpoint.
"""

import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

import psutil

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keep only the last N completed operations to prevent memory growth
MAX_STORED_METRICS = 1000


class PerformanceMonitor:
    """
    In-process timer for named operations.

    Only one in-flight measurement per operation name is tracked at a time,
    which matches how the sync orchestrator uses it (one run at a time).
    """

    def __init__(self, max_stored_metrics: int = MAX_STORED_METRICS):
        self._active: Dict[str, Dict[str, Any]] = {}
        self._completed: Deque[Dict[str, Any]] = deque(maxlen=max_stored_metrics)

    def start(self, operation_name: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Start tracking an operation."""
        self._active[operation_name] = {
            "operation": operation_name,
            "start_time": time.perf_counter(),
            "metadata": dict(metadata or {}),
        }

    def end(self, operation_name: str, metadata: Optional[Dict[str, Any]] = None) -> float:
        """
        End tracking an operation.

        Args:
            operation_name: Name passed to start()
            metadata: Extra data merged into the stored metric

        Returns:
            float: Duration in milliseconds (0 if the operation was never started)
        """
        metric = self._active.pop(operation_name, None)
        if metric is None:
            logger.warning(f"Performance metric not found: {operation_name}")
            return 0.0

        duration_ms = (time.perf_counter() - metric["start_time"]) * 1000
        metric["duration_ms"] = duration_ms
        metric["metadata"].update(metadata or {})
        self._completed.append(metric)

        logger.debug(
            f"Operation completed: {operation_name} in {duration_ms:.1f}ms",
            extra={"operation": operation_name, "duration_ms": round(duration_ms, 2)},
        )
        return duration_ms

    async def measure(
        self,
        operation_name: str,
        fn: Callable[[], Awaitable[T]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> T:
        """Measure an async operation, recording success or failure."""
        self.start(operation_name, metadata)
        try:
            result = await fn()
        except Exception as e:
            self.end(operation_name, {"success": False, "error": str(e)})
            raise
        self.end(operation_name, {"success": True})
        return result

    def get_stats(self, operation_name: str) -> Optional[Dict[str, Any]]:
        """
        Get statistics for one operation.

        Returns:
            Dict with count/avg/min/max duration and success rate, or None
        """
        metrics = [m for m in self._completed if m["operation"] == operation_name]
        if not metrics:
            return None

        durations = [m["duration_ms"] for m in metrics]
        successes = sum(1 for m in metrics if m["metadata"].get("success") is not False)

        return {
            "count": len(metrics),
            "avg_duration_ms": round(sum(durations) / len(durations), 2),
            "min_duration_ms": round(min(durations), 2),
            "max_duration_ms": round(max(durations), 2),
            "success_rate": round(successes / len(metrics) * 100, 2),
        }

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        names = {m["operation"] for m in self._completed}
        return {name: self.get_stats(name) for name in sorted(names)}

    def clear(self) -> None:
        self._active.clear()
        self._completed.clear()


def get_memory_usage() -> Dict[str, float]:
    """
    Get memory usage of the current process in MB.

    Returns:
        Dict: rss, vms and system memory percentage
    """
    process = psutil.Process()
    memory_info = process.memory_info()

    return {
        "rss_mb": round(memory_info.rss / 1024 / 1024, 2),
        "vms_mb": round(memory_info.vms / 1024 / 1024, 2),
        "system_memory_percent": psutil.virtual_memory().percent,
    }


# Global monitor instance
_performance_monitor: Optional[PerformanceMonitor] = None


def get_performance_monitor() -> PerformanceMonitor:
    """
    Get the global performance monitor.

    Returns:
        PerformanceMonitor: Shared instance
    """
    global _performance_monitor
    if _performance_monitor is None:
        _performance_monitor = PerformanceMonitor()
    return _performance_monitor
