from __future__ import annotations

import asyncio
import inspect
import json
import logging
import threading
import typing
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from tutordesk.config import settings
from tutordesk.metrics import record_cache_event


logger = logging.getLogger(__name__)

T = TypeVar('T')
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.utcnow()


def cache_key(prefix: str, *parts: str | int | None) -> str:
    """Compose ``prefix:part1:part2`` keys; empty parts render as ``all``."""
    if not parts:
        return prefix
    rendered = ['all' if part is None or part == '' else str(part) for part in parts]
    return ':'.join([prefix, *rendered])


def _normalize_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ('1', 'true', 'yes', 'y', 'on')


def bypass_cache(context: Any | None = None) -> bool:
    if context is None:
        return False
    if isinstance(context, dict):
        return _normalize_bool(context.get('bypass_cache'))
    query = getattr(context, 'query_params', None)
    if query is not None:
        return _normalize_bool(query.get('bypass_cache'))
    return False


class CacheBackend:
    def get(self, key: str) -> Any | None:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> None:
        raise NotImplementedError

    def delete_tag(self, tag: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError


class MemoryCacheBackend(CacheBackend):
    """Process-local store. Expired entries are dropped when they are next read."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._store: dict[str, tuple[datetime, Any, frozenset[str]]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            expires_at, value, _ = item
            if self._clock() >= expires_at:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        expires_at = self._clock() + timedelta(seconds=max(1, int(ttl)))
        with self._lock:
            self._store[key] = (expires_at, value, frozenset(tags))

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def delete_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [key for key in self._store if key.startswith(prefix)]:
                self._store.pop(key, None)

    def delete_tag(self, tag: str) -> None:
        with self._lock:
            for key in [key for key, item in self._store.items() if tag in item[2]]:
                self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)


class RedisCacheBackend(CacheBackend):
    _TAG_PREFIX = 'cache-tag:'

    def __init__(self, redis_url: str) -> None:
        import redis  # type: ignore

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)

    def get(self, key: str) -> Any | None:
        raw = self._client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        payload = json.dumps(value, default=str)
        self._client.setex(key, max(1, int(ttl)), payload)
        for tag in tags:
            self._client.sadd(f'{self._TAG_PREFIX}{tag}', key)

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def _scan(self, pattern: str) -> list[str]:
        found: list[str] = []
        cursor = 0
        while True:
            cursor, keys = self._client.scan(cursor=cursor, match=pattern, count=200)
            found.extend(keys)
            if cursor == 0:
                break
        return found

    def delete_prefix(self, prefix: str) -> None:
        keys = self._scan(f'{prefix}*')
        if keys:
            self._client.delete(*keys)

    def delete_tag(self, tag: str) -> None:
        tag_key = f'{self._TAG_PREFIX}{tag}'
        keys = list(self._client.smembers(tag_key) or [])
        if keys:
            self._client.delete(*keys)
        self._client.delete(tag_key)

    def clear(self) -> None:
        keys = [key for key in self._scan('*')]
        if keys:
            self._client.delete(*keys)

    def keys(self) -> list[str]:
        return [key for key in self._scan('*') if not key.startswith(self._TAG_PREFIX)]


@dataclass
class CacheManager:
    backend: CacheBackend
    default_ttl: int | None = None

    def bypass_cache(self, context: Any | None = None) -> bool:
        return bypass_cache(context)

    def get_cached(self, key: str) -> Any | None:
        value = self.backend.get(key)
        if value is not None:
            record_cache_event('cache_hit')
            logger.debug('cache hit: %s', key)
        else:
            record_cache_event('cache_miss')
            logger.debug('cache miss: %s', key)
        return value

    def set_cached(self, key: str, value: Any, ttl: int | None = None, tags: Iterable[str] = ()) -> None:
        ttl_value = ttl if ttl is not None else (self.default_ttl or settings.default_cache_ttl)
        self.backend.set(key, value, ttl_value, tags)
        logger.debug('cache set: %s ttl=%s', key, ttl_value)

    def invalidate(self, key: str) -> None:
        self.backend.delete(key)
        record_cache_event('cache_invalidate')
        logger.debug('cache invalidate: %s', key)

    def invalidate_prefix(self, prefix: str) -> None:
        self.backend.delete_prefix(prefix)
        record_cache_event('cache_invalidate')
        logger.debug('cache invalidate prefix: %s', prefix)

    def invalidate_tag(self, tag: str) -> None:
        self.backend.delete_tag(tag)
        record_cache_event('cache_invalidate')
        logger.debug('cache invalidate tag: %s', tag)

    def clear(self) -> None:
        self.backend.clear()
        record_cache_event('cache_invalidate')
        logger.debug('cache cleared')

    def keys(self) -> list[str]:
        return self.backend.keys()


class RequestCoalescer:
    """Shares one in-flight task between concurrent callers of the same key.

    Callers await the task through ``asyncio.shield`` so a cancelled caller does not
    cancel the request for the others. The key is released once the task settles.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def keys(self) -> list[str]:
        return list(self._pending)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda done, key=key: self._release(key, done))
        else:
            record_cache_event('cache_dedup')
            logger.debug('request joined in-flight: %s', key)
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            self._pending.pop(key, None)
        if not task.cancelled():
            # Mark the outcome as observed even when every caller went away.
            task.exception()

    def detach(self, key: str) -> None:
        """Stop handing out the in-flight task for ``key``; current awaiters keep it."""
        self._pending.pop(key, None)

    def detach_where(self, predicate: Callable[[str], bool]) -> None:
        for key in [key for key in self._pending if predicate(key)]:
            self._pending.pop(key, None)

    def cancel_all(self) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for task in pending:
            task.cancel()


def _build_cache_backend() -> CacheBackend:
    if settings.cache_backend == 'redis' and settings.cache_redis_url:
        try:
            return RedisCacheBackend(settings.cache_redis_url)
        except Exception:
            logger.exception('redis_cache_init_failed_falling_back_to_memory')
    return MemoryCacheBackend()


cache = CacheManager(backend=_build_cache_backend())


def _extract_request(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any | None:
    if 'request' in kwargs:
        return kwargs['request']
    for arg in args:
        if getattr(arg, 'query_params', None) is not None:
            return arg
    return None


def _resolved_signature(func: Callable[..., Any]) -> inspect.Signature:
    """
    FastAPI resolves string annotations using the callable's globals.
    The wrappers below live in this module, so string annotations copied from the
    endpoint must be resolved against the endpoint's own module first.
    """

    sig = inspect.signature(func)
    try:
        hints = typing.get_type_hints(func, globalns=getattr(func, '__globals__', None))
    except Exception:
        return sig

    parameters = []
    for name, param in sig.parameters.items():
        if name in hints:
            parameters.append(param.replace(annotation=hints[name]))
        else:
            parameters.append(param)

    return_annotation = hints.get('return', sig.return_annotation)
    return sig.replace(parameters=parameters, return_annotation=return_annotation)


def cached_view(
    ttl: int | None = None,
    key_builder: Callable[..., str | None] | None = None,
    tags: Iterable[str] = (),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    tag_list = tuple(tags)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                if _normalize_bool(kwargs.get('bypass_cache')) or bypass_cache(_extract_request(args, kwargs)):
                    record_cache_event('cache_bypass')
                    return await func(*args, **kwargs)
                key = key_builder(*args, **kwargs) if key_builder else None
                if key:
                    cached = cache.get_cached(key)
                    if cached is not None:
                        return cached
                result = await func(*args, **kwargs)
                if key:
                    cache.set_cached(key, result, ttl, tag_list)
                return result

            # FastAPI must see the endpoint's parameters, not *args/**kwargs.
            async_wrapper.__signature__ = _resolved_signature(func)  # type: ignore[attr-defined]
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            if _normalize_bool(kwargs.get('bypass_cache')) or bypass_cache(_extract_request(args, kwargs)):
                record_cache_event('cache_bypass')
                return func(*args, **kwargs)
            key = key_builder(*args, **kwargs) if key_builder else None
            if key:
                cached = cache.get_cached(key)
                if cached is not None:
                    return cached
            result = func(*args, **kwargs)
            if key:
                cache.set_cached(key, result, ttl, tag_list)
            return result

        sync_wrapper.__signature__ = _resolved_signature(func)  # type: ignore[attr-defined]
        return sync_wrapper

    return decorator
