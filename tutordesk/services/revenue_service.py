from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from tutordesk.config import settings
from tutordesk.core.time_provider import TimeProvider, default_time_provider
from tutordesk.errors import ServiceValidationError
from tutordesk.metrics import timed_service
from tutordesk.models import Course, Student
from tutordesk.revenue import (
    DEFAULT_RANGE,
    RANGES,
    build_dashboard_stats,
    build_export_lines,
    parse_iso_date,
    resolve_date_range,
    summarize_revenue,
)
from tutordesk.services.lesson_service import list_lessons, serialize_lesson


logger = logging.getLogger(__name__)


def parse_student_filter(value: str | int | None) -> int | None:
    """``None``, an empty string and ``all`` mean every student."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == 'all':
        return None
    try:
        return int(text)
    except ValueError as exc:
        raise ServiceValidationError(f'Invalid studentId: {value}') from exc


def _parse_date(value: str | None, label: str):
    try:
        return parse_iso_date(value)
    except ValueError as exc:
        raise ServiceValidationError(f'Invalid {label}: {value}') from exc


@timed_service('revenue_summary')
def revenue_summary(
    db: Session,
    *,
    tutor_id: int,
    range_name: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    course_id: int | None = None,
    student_id: str | int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    name = (range_name or DEFAULT_RANGE).strip().lower()
    start_anchor = _parse_date(start_date, 'startDate')
    end_anchor = _parse_date(end_date, 'endDate')
    if name not in RANGES:
        # Unknown ranges mean the current month, whatever the anchors say.
        logger.info('revenue_unknown_range tutor_id=%s range=%s', tutor_id, range_name)
        name = DEFAULT_RANGE
        start_anchor = end_anchor = None
    range_start, range_end = resolve_date_range(
        name,
        start_anchor,
        end_anchor,
        today=time_provider.today(),
    )
    student_filter = parse_student_filter(student_id)
    lessons = list_lessons(
        db,
        tutor_id=tutor_id,
        course_id=course_id,
        student_id=student_filter,
        start_date=range_start,
        end_date=range_end,
    )
    summary = summarize_revenue(
        [serialize_lesson(lesson) for lesson in lessons],
        now=time_provider.naive_now(),
        range_name=name,
        range_start=range_start,
        range_end=range_end,
        student_id=student_filter,
        default_rate=settings.default_hourly_rate,
    )
    summary['range'] = name
    summary['period'] = {'startDate': range_start.isoformat(), 'endDate': range_end.isoformat()}
    return summary


@timed_service('revenue_export')
def revenue_export(
    db: Session,
    *,
    tutor_id: int,
    start_date: str | None,
    end_date: str | None,
    student_id: str | int | None = None,
) -> dict:
    if not start_date or not end_date:
        raise ServiceValidationError('Missing parameters: tutorId, startDate, endDate')
    start = _parse_date(start_date, 'startDate')
    end = _parse_date(end_date, 'endDate')
    student_filter = parse_student_filter(student_id)
    lessons = list_lessons(db, tutor_id=tutor_id, student_id=student_filter, start_date=start, end_date=end)
    total, lines = build_export_lines(
        [serialize_lesson(lesson) for lesson in lessons],
        student_id=student_filter,
        default_rate=settings.default_hourly_rate,
    )
    logger.info('revenue_export tutor_id=%s lessons=%s total=%.2f', tutor_id, len(lines), total)
    return {
        'revenueTotal': total,
        'lessons': lines,
        'period': {'startDate': start_date, 'endDate': end_date},
    }


def dashboard_stats(
    db: Session,
    tutor_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    lessons = list_lessons(db, tutor_id=tutor_id)
    total_students = db.query(func.count(Student.id)).filter(Student.tutor_id == tutor_id).scalar() or 0
    total_courses = db.query(func.count(Course.id)).filter(Course.tutor_id == tutor_id).scalar() or 0
    return build_dashboard_stats(
        [serialize_lesson(lesson) for lesson in lessons],
        now=time_provider.naive_now(),
        total_students=total_students,
        total_courses=total_courses,
        default_rate=settings.default_hourly_rate,
    )
