"""Client-side cache and aggregation layer over :class:`~tutordesk.client.api.ApiClient`.

Reads are cached per key with a time-to-live chosen by resource kind, and concurrent
reads of one key share a single request. Mutations made through the manager drop
every cached entry tagged with a resource kind the mutation touches.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from tutordesk.cache import CacheManager, Clock, MemoryCacheBackend, RequestCoalescer, cache_key
from tutordesk.client.api import ApiClient
from tutordesk.config import settings
from tutordesk.core.time_provider import TimeProvider, default_time_provider
from tutordesk.revenue import build_dashboard_stats, resolve_date_range, summarize_revenue


logger = logging.getLogger(__name__)

T = TypeVar('T')

# Resource kinds each cached entry depends on, keyed by the entry's key prefix.
KIND_TAGS: dict[str, tuple[str, ...]] = {
    'user': ('user',),
    'students': ('students',),
    'courses': ('courses',),
    'lessons': ('lessons',),
    'revenue': ('revenue', 'lessons', 'students'),
    'dashboard': ('dashboard', 'lessons', 'students', 'courses'),
}

# Resource kinds a successful write invalidates.
MUTATION_TAGS: dict[str, tuple[str, ...]] = {
    'students': ('students', 'lessons', 'revenue'),
    'lessons': ('lessons', 'revenue'),
    'courses': ('courses', 'lessons'),
    'user': ('user',),
}


def _kind_of(key: str) -> str:
    return key.split(':', 1)[0]


def default_ttls() -> dict[str, int]:
    return {
        'user': settings.client_cache_ttl,
        'students': settings.client_cache_ttl,
        'courses': settings.client_cache_ttl,
        'lessons': settings.client_lessons_cache_ttl,
        'revenue': settings.client_revenue_cache_ttl,
        'dashboard': settings.client_lessons_cache_ttl,
    }


class DataManager:
    def __init__(
        self,
        api: ApiClient,
        *,
        clock: Clock | None = None,
        ttl_overrides: dict[str, int] | None = None,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self.api = api
        self.time_provider = time_provider
        self._cache = CacheManager(backend=MemoryCacheBackend(clock=clock), default_ttl=settings.client_cache_ttl)
        self._in_flight = RequestCoalescer()
        self._ttls = {**default_ttls(), **(ttl_overrides or {})}
        self._generation = 0
        self._closed = False

    async def __aenter__(self) -> 'DataManager':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel in-flight requests and drop the cache. The manager is unusable afterwards."""
        self._closed = True
        self._generation += 1
        self._in_flight.cancel_all()
        self._cache.backend.clear()
        # Let cancelled tasks run their cancellation before the loop moves on.
        await asyncio.sleep(0)

    def ttl_for(self, kind: str) -> int:
        return int(self._ttls.get(kind, settings.client_cache_ttl))

    async def fetch_with_cache(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        *,
        force_refresh: bool = False,
    ) -> T:
        if self._closed:
            raise RuntimeError('DataManager is closed')
        kind = _kind_of(key)
        if not force_refresh:
            cached = self._cache.get_cached(key)
            if cached is not None:
                return cached

        generation = self._generation

        async def load() -> T:
            data = await fetcher()
            # A write that landed while this request was in flight makes the result stale.
            if generation == self._generation and not self._closed:
                self._cache.set_cached(key, data, self.ttl_for(kind), KIND_TAGS.get(kind, (kind,)))
            return data

        return await self._in_flight.run(key, load)

    # Invalidation

    def invalidate(self, key: str) -> None:
        self._generation += 1
        self._cache.invalidate(key)
        self._in_flight.detach(key)

    def invalidate_prefix(self, prefix: str) -> None:
        self._generation += 1
        self._cache.invalidate_prefix(prefix)
        self._in_flight.detach_where(lambda key: key.startswith(prefix))

    def invalidate_tag(self, tag: str) -> None:
        self._generation += 1
        self._cache.invalidate_tag(tag)
        self._in_flight.detach_where(lambda key: tag in KIND_TAGS.get(_kind_of(key), (_kind_of(key),)))

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        for tag in tags:
            self.invalidate_tag(tag)

    def clear(self) -> None:
        self._generation += 1
        self._cache.clear()
        self._in_flight.detach_where(lambda key: True)

    def stats(self) -> dict:
        keys = sorted(self._cache.keys())
        return {'size': len(keys), 'keys': keys, 'in_flight': len(self._in_flight)}

    async def _mutate(self, kind: str, call: Awaitable[T]) -> T:
        result = await call
        self.invalidate_tags(MUTATION_TAGS[kind])
        logger.debug('data_manager_mutation kind=%s', kind)
        return result

    # Reads

    async def get_user(self, user_id: int, *, force_refresh: bool = False) -> dict:
        return await self.fetch_with_cache(
            cache_key('user', user_id),
            lambda: self.api.get_user(user_id),
            force_refresh=force_refresh,
        )

    async def get_students(self, tutor_id: int, *, force_refresh: bool = False) -> list[dict]:
        return await self.fetch_with_cache(
            cache_key('students', tutor_id),
            lambda: self.api.get_students(tutor_id),
            force_refresh=force_refresh,
        )

    async def get_courses(self, tutor_id: int | None = None, *, force_refresh: bool = False) -> list[dict]:
        return await self.fetch_with_cache(
            cache_key('courses', tutor_id),
            lambda: self.api.get_courses(tutor_id),
            force_refresh=force_refresh,
        )

    async def get_lessons(
        self,
        *,
        tutor_id: int | None = None,
        course_id: int | None = None,
        student_id: int | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        force_refresh: bool = False,
    ) -> list[dict]:
        filters = {
            'tutorId': tutor_id,
            'courseId': course_id,
            'studentId': student_id,
            'startDate': start_date,
            'endDate': end_date,
        }
        filters = {name: value for name, value in filters.items() if value is not None}
        return await self.fetch_with_cache(
            cache_key('lessons', json.dumps(filters, sort_keys=True)),
            lambda: self.api.get_lessons(
                tutor_id=tutor_id,
                course_id=course_id,
                student_id=student_id,
                start_date=start_date,
                end_date=end_date,
            ),
            force_refresh=force_refresh,
        )

    async def get_revenue(
        self,
        tutor_id: int,
        *,
        range_name: str = 'month',
        start_date: str | None = None,
        end_date: str | None = None,
        course_id: int | None = None,
        student_id: int | str | None = None,
        force_refresh: bool = False,
    ) -> dict:
        """Server-computed revenue summary."""
        return await self.fetch_with_cache(
            cache_key('revenue', tutor_id, range_name, start_date, end_date, course_id, student_id),
            lambda: self.api.get_revenue(
                tutor_id,
                range_name=range_name,
                start_date=start_date,
                end_date=end_date,
                course_id=course_id,
                student_id=student_id,
            ),
            force_refresh=force_refresh,
        )

    # Aggregates

    async def get_revenue_overview(
        self,
        tutor_id: int,
        range_name: str = 'month',
        *,
        start_date: str | None = None,
        end_date: str | None = None,
        student_id: int | None = None,
        force_refresh: bool = False,
    ) -> dict:
        """Revenue summary computed locally from the (cached) lessons of the range."""
        range_start, range_end = resolve_date_range(
            range_name,
            start_date,
            end_date,
            today=self.time_provider.today(),
        )
        lessons = await self.get_lessons(
            tutor_id=tutor_id,
            student_id=student_id,
            start_date=range_start.isoformat(),
            end_date=range_end.isoformat(),
            force_refresh=force_refresh,
        )
        summary = summarize_revenue(
            lessons,
            now=self.time_provider.naive_now(),
            range_name=range_name,
            range_start=range_start,
            range_end=range_end,
            student_id=student_id,
            default_rate=settings.default_hourly_rate,
        )
        summary['period'] = {'startDate': range_start.isoformat(), 'endDate': range_end.isoformat()}
        return summary

    async def get_dashboard_stats(self, tutor_id: int, *, force_refresh: bool = False) -> dict:
        lessons, students, courses = await asyncio.gather(
            self.get_lessons(tutor_id=tutor_id, force_refresh=force_refresh),
            self.get_students(tutor_id, force_refresh=force_refresh),
            self.get_courses(tutor_id, force_refresh=force_refresh),
        )
        return build_dashboard_stats(
            lessons,
            now=self.time_provider.naive_now(),
            total_students=len(students),
            total_courses=len(courses),
            default_rate=settings.default_hourly_rate,
        )

    async def preload_user_data(self, user_id: int) -> None:
        try:
            await self.get_user(user_id)
        except Exception:
            logger.warning('data_manager_preload_failed user_id=%s', user_id, exc_info=True)

    # Writes

    async def create_student(self, data: dict) -> dict:
        return await self._mutate('students', self.api.create_student(data))

    async def update_student(self, student_id: int, data: dict) -> dict:
        return await self._mutate('students', self.api.update_student(student_id, data))

    async def delete_student(self, student_id: int) -> dict:
        return await self._mutate('students', self.api.delete_student(student_id))

    async def create_course(self, data: dict) -> dict:
        return await self._mutate('courses', self.api.create_course(data))

    async def update_course(self, course_id: int, data: dict) -> dict:
        return await self._mutate('courses', self.api.update_course(course_id, data))

    async def delete_course(self, course_id: int) -> dict:
        return await self._mutate('courses', self.api.delete_course(course_id))

    async def add_student_to_course(self, course_id: int, student_id: int) -> dict:
        return await self._mutate('courses', self.api.add_student_to_course(course_id, student_id))

    async def remove_student_from_course(self, course_id: int, student_id: int) -> dict:
        return await self._mutate('courses', self.api.remove_student_from_course(course_id, student_id))

    async def create_lesson(self, data: dict) -> dict:
        return await self._mutate('lessons', self.api.create_lesson(data))

    async def update_lesson(self, lesson_id: int, data: dict) -> dict:
        return await self._mutate('lessons', self.api.update_lesson(lesson_id, data))

    async def delete_lesson(self, lesson_id: int) -> dict:
        return await self._mutate('lessons', self.api.delete_lesson(lesson_id))

    async def update_lesson_comment(self, lesson_id: int, comment: str) -> dict:
        return await self._mutate('lessons', self.api.update_lesson_comment(lesson_id, comment))

    async def delete_lesson_comment(self, lesson_id: int) -> dict:
        return await self._mutate('lessons', self.api.delete_lesson_comment(lesson_id))

    async def update_user(self, user_id: int, data: dict) -> dict:
        return await self._mutate('user', self.api.update_user(user_id, data))
