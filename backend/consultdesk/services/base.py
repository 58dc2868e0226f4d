# backend/consultdesk/services/base.py
"""
Base Service Pattern.

Services own the unit of work. ``transaction()`` commits on a clean exit and
rolls back otherwise; driver errors are reported as ServiceException while
domain exceptions pass through untouched. ``measure_operation`` times a
method, keeps per-class counters in process and forwards the sample to
Prometheus.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0

# Guards BaseService._class_metrics; measured methods run on worker threads
_metrics_lock = threading.Lock()


def _empty_stats() -> Dict[str, float]:
    return {"count": 0, "total_time": 0.0, "max_time": 0.0, "success_count": 0, "failure_count": 0}


class BaseService:
    """Session, optional cache and per-class logger shared by all services."""

    # {service class name: {operation: stats}}
    _class_metrics: Dict[str, Dict[str, Dict[str, float]]] = {}

    def __init__(self, db: Session, cache: Optional["CacheService"] = None):
        self.db = db
        self.cache = cache
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        try:
            yield self.db
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Rolled back after database error: %s", exc)
            raise ServiceException(f"Database operation failed: {exc}") from exc
        except Exception as exc:
            self.db.rollback()
            self.logger.debug("Rolled back after %s: %s", type(exc).__name__, exc)
            raise
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Commit failed: %s", exc)
            raise ServiceException(f"Database operation failed: {exc}") from exc

    def end_read_transaction(self) -> None:
        """
        Close the transaction opened implicitly by earlier reads.

        Called before outbound provider calls so no connection is held while
        waiting on the network. A session with pending writes is left alone.
        """
        if self.db.in_transaction() and not (self.db.new or self.db.dirty or self.db.deleted):
            self.db.commit()

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """Decorate a service method so each call is timed and counted as ``operation_name``."""

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                error_type: Optional[str] = None
                try:
                    return func(self, *args, **kwargs)
                except Exception as exc:
                    error_type = type(exc).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - started
                    BaseService._observe(self, operation_name, elapsed, error_type)

            setattr(wrapper, "_operation_name", operation_name)
            return cast(F, wrapper)

        return decorator

    @staticmethod
    def _observe(service: Any, operation: str, elapsed: float, error_type: Optional[str]) -> None:
        name = service.__class__.__name__
        with _metrics_lock:
            per_class = BaseService._class_metrics.setdefault(name, {})
            stats = per_class.setdefault(operation, _empty_stats())
            stats["count"] += 1
            stats["total_time"] += elapsed
            stats["max_time"] = max(stats["max_time"], elapsed)
            stats["failure_count" if error_type else "success_count"] += 1

        if elapsed > SLOW_OPERATION_SECONDS:
            logger.warning("Slow operation %s.%s took %.2fs", name, operation, elapsed)
        try:
            prometheus_metrics.record_service_operation(
                service=name,
                operation=operation,
                duration=elapsed,
                status="error" if error_type else "success",
                error_type=error_type,
            )
        except Exception:
            logger.debug("Could not record metrics for %s.%s", name, operation, exc_info=True)

    def invalidate_pattern(self, pattern: str) -> None:
        """Drop cached keys matching ``pattern``; cache failures are logged, not raised."""
        if self.cache is None:
            return
        try:
            removed = self.cache.delete_pattern(pattern)
        except Exception as exc:
            self.logger.warning("Cache invalidation for %s failed: %s", pattern, exc)
            return
        self.logger.debug("Invalidated %s cache keys for %s", removed, pattern)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info("Operation: %s", operation, extra={"operation": operation, **context})

    def get_metrics(self) -> Dict[str, Any]:
        """Aggregated timings for this service class's measured operations."""
        with _metrics_lock:
            snapshot = {
                operation: dict(stats)
                for operation, stats in BaseService._class_metrics.get(
                    self.__class__.__name__, {}
                ).items()
            }
        summary: Dict[str, Any] = {}
        for operation, stats in snapshot.items():
            count = stats["count"]
            if not count:
                continue
            summary[operation] = {
                "count": count,
                "avg_time": stats["total_time"] / count,
                "max_time": stats["max_time"],
                "success_rate": stats["success_count"] / count,
                "failure_count": stats["failure_count"],
            }
        return summary
