"""Lesson billing arithmetic shared by the revenue endpoints and the client data layer.

Lessons are handled in their wire shape (the dicts the lessons API returns), so the
same functions summarize ORM rows on the server and fetched JSON on the client.
"""

from __future__ import annotations

import calendar
import math
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Mapping


RANGES = ('day', 'week', 'month', 'quarter', 'year')
DEFAULT_RANGE = 'month'
DEFAULT_HOURLY_RATE = 30.0

_NUMBER_PREFIX = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)')
_INT_PREFIX = re.compile(r'^[+-]?\d+')


def _leading_float(text: str) -> float | None:
    match = _NUMBER_PREFIX.match(text.strip())
    if not match:
        return None
    return float(match.group(0))


def _finite_or_zero(value: float | None) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return value


def parse_duration_to_hours(duration: str | None) -> float:
    """Convert a free-form lesson duration into fractional hours.

    Accepted forms: ``"1h30"``, ``"1h"``, ``"1.5h"``, ``"1:30"``, ``"1:30:00"``,
    ``"1.5"`` (decimal hours) and ``"90"`` (minutes). Empty or unreadable input counts
    as zero hours.
    """
    if not duration:
        return 0.0
    clean = str(duration).strip().lower()
    if not clean:
        return 0.0

    if 'h' in clean:
        parts = clean.split('h')
        if len(parts) != 2:
            return 0.0
        hours = _finite_or_zero(_leading_float(parts[0]))
        minutes = _finite_or_zero(_leading_float(parts[1]))
        return hours + minutes / 60

    if ':' in clean:
        # Trailing seconds (H:MM:SS) are ignored.
        parts = clean.split(':')
        if len(parts) not in (2, 3):
            return 0.0
        try:
            hours = float(parts[0]) if parts[0].strip() else 0.0
            minutes = float(parts[1]) if parts[1].strip() else 0.0
        except ValueError:
            return 0.0
        return _finite_or_zero(hours + minutes / 60)

    if '.' in clean:
        return _finite_or_zero(_leading_float(clean))

    match = _INT_PREFIX.match(clean)
    if match:
        return int(match.group(0)) / 60
    return 0.0


def parse_iso_date(value: str | date | None) -> date | None:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError(f'Invalid date: {value}') from exc


def parse_start_time(value: str | None) -> time:
    text = (value or '').strip()
    if not text:
        return time(0, 0)
    try:
        hour_raw, minute_raw = text.split(':')[:2]
        return time(int(hour_raw), int(minute_raw))
    except ValueError:
        return time(0, 0)


def _start_of_week(day: date) -> date:
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _end_of_month(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def _start_of_quarter(day: date) -> date:
    return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def _end_of_quarter(day: date) -> date:
    return _end_of_month(date(day.year, 3 * ((day.month - 1) // 3) + 3, 1))


def resolve_date_range(
    range_name: str | None,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    *,
    today: date,
) -> tuple[date, date]:
    """Expand a named range around the given anchors (or today) to whole calendar units.

    Weeks run Sunday to Saturday. An unknown range name falls back to the current month.
    """
    name = (range_name or DEFAULT_RANGE).strip().lower()
    start_anchor = parse_iso_date(start_date) or today
    end_anchor = parse_iso_date(end_date) or today

    if name == 'day':
        return start_anchor, end_anchor
    if name == 'week':
        end_of_week = _start_of_week(end_anchor) + timedelta(days=6)
        return _start_of_week(start_anchor), end_of_week
    if name == 'month':
        return start_anchor.replace(day=1), _end_of_month(end_anchor)
    if name == 'quarter':
        return _start_of_quarter(start_anchor), _end_of_quarter(end_anchor)
    if name == 'year':
        if start_date and end_date:
            return date(start_anchor.year, 1, 1), date(end_anchor.year, 12, 31)
        return date(today.year, 1, 1), date(today.year, 12, 31)
    return today.replace(day=1), _end_of_month(today)


def lesson_starts_at(lesson: Mapping[str, Any]) -> datetime:
    lesson_day = parse_iso_date(lesson.get('date'))
    if lesson_day is None:
        raise ValueError(f"Lesson {lesson.get('id')} has no date")
    return datetime.combine(lesson_day, parse_start_time(lesson.get('startTime')))


def student_rate(student: Mapping[str, Any], default_rate: float = DEFAULT_HOURLY_RATE) -> float:
    raw = student.get('hourlyRate')
    try:
        rate = float(raw) if raw is not None else 0.0
    except (TypeError, ValueError):
        rate = 0.0
    if not math.isfinite(rate) or rate <= 0:
        return float(default_rate)
    return rate


def bill_lesson(
    lesson: Mapping[str, Any],
    *,
    student_id: int | str | None = None,
    default_rate: float = DEFAULT_HOURLY_RATE,
) -> tuple[float, list[dict[str, Any]]]:
    """Return the lesson revenue and one contribution row per billed student."""
    hours = parse_duration_to_hours(lesson.get('duration'))
    contributions: list[dict[str, Any]] = []
    seen: set[str] = set()
    for student in lesson.get('students') or []:
        key = str(student.get('id'))
        if key in seen:
            continue
        seen.add(key)
        if student_id is not None and key != str(student_id):
            continue
        rate = student_rate(student, default_rate)
        contributions.append(
            {
                'id': student.get('id'),
                'firstName': student.get('firstName') or '',
                'lastName': student.get('lastName') or '',
                'hourlyRate': rate,
                'contribution': rate * hours,
            }
        )
    return sum(item['contribution'] for item in contributions), contributions


def _month_keys(start: date, end: date) -> list[str]:
    keys: list[str] = []
    cursor = start.replace(day=1)
    while cursor <= end:
        keys.append(cursor.strftime('%Y-%m'))
        cursor = (cursor.replace(day=28) + timedelta(days=4)).replace(day=1)
    return keys


def summarize_revenue(
    lessons: Iterable[Mapping[str, Any]],
    *,
    now: datetime,
    range_name: str | None = None,
    range_start: date | None = None,
    range_end: date | None = None,
    student_id: int | str | None = None,
    default_rate: float = DEFAULT_HOURLY_RATE,
) -> dict[str, Any]:
    total_revenue = 0.0
    projected_revenue = 0.0
    lessons_completed = 0
    billed_rates: list[float] = []
    revenue_by_period: dict[str, float] = {}
    lesson_details: list[dict[str, Any]] = []

    for lesson in lessons:
        revenue, contributions = bill_lesson(lesson, student_id=student_id, default_rate=default_rate)
        is_past = lesson_starts_at(lesson) < now
        if is_past:
            total_revenue += revenue
            lessons_completed += 1
            billed_rates.extend(item['hourlyRate'] for item in contributions)
        else:
            projected_revenue += revenue

        period_key = str(lesson.get('date'))[:10]
        revenue_by_period[period_key] = revenue_by_period.get(period_key, 0.0) + revenue

        course = lesson.get('course') or {}
        lesson_details.append(
            {
                'id': lesson.get('id'),
                'date': period_key,
                'title': lesson.get('title') or '',
                'duration': lesson.get('duration') or '',
                'courseTitle': course.get('title') or 'Unassigned course',
                'revenue': revenue,
                'isPast': is_past,
                'students': contributions,
            }
        )

    summary: dict[str, Any] = {
        'totalRevenue': total_revenue,
        'projectedRevenue': projected_revenue,
        'averageHourlyRate': sum(billed_rates) / len(billed_rates) if billed_rates else 0.0,
        'lessonsCompleted': lessons_completed,
        'revenueByPeriod': revenue_by_period,
        'lessonDetails': lesson_details,
    }

    if (range_name or '').lower() == 'year' and range_start and range_end:
        by_month = {key: 0.0 for key in _month_keys(range_start, range_end)}
        for period_key, amount in revenue_by_period.items():
            month_key = period_key[:7]
            if month_key in by_month:
                by_month[month_key] += amount
        summary['revenueByMonth'] = by_month

    return summary


def build_export_lines(
    lessons: Iterable[Mapping[str, Any]],
    *,
    student_id: int | str | None = None,
    default_rate: float = DEFAULT_HOURLY_RATE,
) -> tuple[float, list[dict[str, Any]]]:
    total = 0.0
    lines: list[dict[str, Any]] = []
    for lesson in lessons:
        revenue, contributions = bill_lesson(lesson, student_id=student_id, default_rate=default_rate)
        if not contributions:
            continue
        total += revenue
        course = lesson.get('course') or {}
        lines.append(
            {
                'id': lesson.get('id'),
                'date': str(lesson.get('date'))[:10],
                'duration': lesson.get('duration') or '',
                'title': lesson.get('title') or '',
                'student': contributions[0],
                'students': contributions,
                'price': revenue,
                'courseTitle': course.get('title'),
            }
        )
    return total, lines


def build_dashboard_stats(
    lessons: Iterable[Mapping[str, Any]],
    *,
    now: datetime,
    total_students: int,
    total_courses: int,
    default_rate: float = DEFAULT_HOURLY_RATE,
) -> dict[str, Any]:
    rows = list(lessons)
    today = now.date()
    today_key = today.isoformat()
    summary = summarize_revenue(rows, now=now, default_rate=default_rate)
    return {
        'totalLessons': len(rows),
        'todayLessons': sum(1 for lesson in rows if str(lesson.get('date'))[:10] == today_key),
        'upcomingLessons': sum(1 for lesson in rows if lesson_starts_at(lesson) >= now),
        'totalStudents': int(total_students),
        'totalCourses': int(total_courses),
        'totalRevenue': summary['totalRevenue'],
    }
