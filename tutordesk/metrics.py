from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Callable

from tutordesk.config import settings


logger = logging.getLogger('tutordesk.metrics')

CACHE_EVENTS = ('cache_hit', 'cache_miss', 'cache_dedup', 'cache_bypass', 'cache_invalidate')


class MetricsExporter:
    def export_cache_minute(self, *, minute_start: datetime, counts: dict[str, int]) -> None:
        raise NotImplementedError


class LogMetricsExporter(MetricsExporter):
    def export_cache_minute(self, *, minute_start: datetime, counts: dict[str, int]) -> None:
        logger.info(
            'cache_metrics minute=%s %s',
            minute_start.isoformat(),
            ' '.join(f'{name}={counts.get(name, 0)}' for name in CACHE_EVENTS),
        )


_exporter: MetricsExporter = LogMetricsExporter()


def set_metrics_exporter(exporter: MetricsExporter) -> None:
    global _exporter
    _exporter = exporter


class _MinuteCounter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._minute_start_epoch: int | None = None
        self._counts: dict[str, int] = {}

    def _flush_locked(self, minute_epoch: int) -> None:
        if not self._counts:
            return
        minute_start = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=minute_epoch)
        try:
            _exporter.export_cache_minute(minute_start=minute_start, counts=dict(self._counts))
        except Exception:
            logger.exception('metrics_export_failed minute=%s', minute_start.isoformat())
        self._counts.clear()

    def record(self, key: str) -> None:
        minute_epoch = int(time.time() // 60) * 60
        with self._lock:
            if self._minute_start_epoch is None:
                self._minute_start_epoch = minute_epoch
            if minute_epoch != self._minute_start_epoch:
                self._flush_locked(self._minute_start_epoch)
                self._minute_start_epoch = minute_epoch
            self._counts[key] = self._counts.get(key, 0) + 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def flush(self) -> None:
        with self._lock:
            if self._minute_start_epoch is None:
                return
            self._flush_locked(self._minute_start_epoch)


_cache_counter = _MinuteCounter()


def record_cache_event(event: str) -> None:
    _cache_counter.record(event)


def cache_event_counts() -> dict[str, int]:
    return _cache_counter.snapshot()


def flush_cache_metrics() -> None:
    _cache_counter.flush()


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    """Log calls to the wrapped service function that run past the slow threshold."""

    def decorator(func: Callable[..., object]) -> Callable[..., object]:
        threshold_value = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms

        def _report(started: float) -> None:
            duration_ms = (time.perf_counter() - started) * 1000.0
            if duration_ms >= threshold_value:
                logger.info('service_timer label=%s duration_ms=%.2f', label, duration_ms)

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: object, **kwargs: object):
                started = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _report(started)

            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def sync_wrapper(*args: object, **kwargs: object):
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _report(started)

        return sync_wrapper  # type: ignore[return-value]

    return decorator
