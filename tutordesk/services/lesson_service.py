from __future__ import annotations

import logging
from datetime import date, time

from sqlalchemy.orm import Session, joinedload, selectinload

from tutordesk.errors import NotFoundError, PermissionDeniedError, ServiceValidationError
from tutordesk.models import Course, Lesson, LessonStudent
from tutordesk.revenue import parse_iso_date
from tutordesk.services.student_service import (
    invalidate_revenue_cache,
    serialize_student_brief,
    students_owned_by,
)


logger = logging.getLogger(__name__)

LESSON_UPDATABLE_FIELDS = {
    'title',
    'description',
    'lesson_date',
    'start_time',
    'duration',
    'zoom_link',
    'subject',
    'course_id',
}


def serialize_lesson(lesson: Lesson) -> dict:
    course = lesson.course
    students = [serialize_student_brief(student) for student in lesson.students]
    return {
        'id': lesson.id,
        'tutorId': lesson.tutor_id,
        'courseId': lesson.course_id,
        'title': lesson.title or '',
        'description': lesson.description,
        'date': lesson.lesson_date.isoformat(),
        'startTime': lesson.start_time or '00:00',
        'duration': lesson.duration or '',
        'zoomLink': lesson.zoom_link,
        'subject': lesson.subject,
        'tutorComment': lesson.tutor_comment,
        'createdAt': lesson.created_at.isoformat() if lesson.created_at else None,
        'course': {'id': course.id, 'title': course.title} if course else None,
        'students': students,
        'studentIds': [student['id'] for student in students],
    }


def normalize_start_time(value: str | None) -> str:
    text = (value or '').strip()
    if not text:
        return '00:00'
    hour_raw, sep, minute_raw = text.partition(':')
    if not sep or not hour_raw.isdigit() or not minute_raw.isdigit():
        raise ServiceValidationError('startTime must be HH:MM')
    try:
        parsed = time(int(hour_raw), int(minute_raw))
    except ValueError as exc:
        raise ServiceValidationError('startTime must be HH:MM') from exc
    return parsed.strftime('%H:%M')


def merge_student_ids(student_id: int | None, student_ids: list[int] | None) -> list[int]:
    """Fold the single ``studentId`` field into the list form, keeping first-seen order."""
    merged: list[int] = []
    for value in [student_id, *(student_ids or [])]:
        if value is None:
            continue
        if int(value) not in merged:
            merged.append(int(value))
    return merged


def _lesson_query(db: Session):
    return db.query(Lesson).options(
        joinedload(Lesson.course),
        selectinload(Lesson.student_links).joinedload(LessonStudent.student),
    )


def list_lessons(
    db: Session,
    *,
    tutor_id: int | None = None,
    course_id: int | None = None,
    student_id: int | None = None,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
) -> list[Lesson]:
    if tutor_id is None and course_id is None and student_id is None:
        raise ServiceValidationError('Tutor ID is required')
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start and end and start > end:
        raise ServiceValidationError('startDate must be on or before endDate')

    query = _lesson_query(db)
    if tutor_id is not None:
        query = query.filter(Lesson.tutor_id == int(tutor_id))
    if course_id is not None:
        query = query.filter(Lesson.course_id == int(course_id))
    if student_id is not None:
        query = query.filter(Lesson.student_links.any(LessonStudent.student_id == int(student_id)))
    if start:
        query = query.filter(Lesson.lesson_date >= start)
    if end:
        query = query.filter(Lesson.lesson_date <= end)
    return query.order_by(Lesson.lesson_date.asc(), Lesson.start_time.asc(), Lesson.id.asc()).all()


def get_lesson(db: Session, lesson_id: int) -> Lesson:
    lesson = _lesson_query(db).filter(Lesson.id == int(lesson_id)).first()
    if not lesson:
        raise NotFoundError('Lesson not found')
    return lesson


def _check_course(db: Session, tutor_id: int, course_id: int | None) -> None:
    if course_id is None:
        return
    course = db.get(Course, int(course_id))
    if not course:
        raise NotFoundError('Course not found')
    if course.tutor_id != int(tutor_id):
        raise PermissionDeniedError('Course belongs to another tutor')


def _replace_students(db: Session, lesson: Lesson, student_ids: list[int]) -> None:
    students = students_owned_by(db, lesson.tutor_id, student_ids)
    lesson.student_links.clear()
    db.flush()
    for student in students:
        lesson.student_links.append(LessonStudent(student=student))


def create_lesson(db: Session, *, tutor_id: int, fields: dict, student_ids: list[int]) -> Lesson:
    if not fields.get('lesson_date'):
        raise ServiceValidationError('date is required')
    if not (fields.get('duration') or '').strip():
        raise ServiceValidationError('duration is required')
    _check_course(db, tutor_id, fields.get('course_id'))

    lesson = Lesson(tutor_id=int(tutor_id))
    for field, value in fields.items():
        if field in LESSON_UPDATABLE_FIELDS:
            setattr(lesson, field, value)
    lesson.title = (lesson.title or '').strip()
    lesson.start_time = normalize_start_time(fields.get('start_time'))
    db.add(lesson)
    db.flush()
    _replace_students(db, lesson, student_ids)
    db.commit()
    invalidate_revenue_cache()
    logger.info('lesson_created lesson_id=%s tutor_id=%s students=%s', lesson.id, tutor_id, len(student_ids))
    return get_lesson(db, lesson.id)


def update_lesson(db: Session, lesson_id: int, changes: dict, student_ids: list[int] | None = None) -> Lesson:
    lesson = get_lesson(db, lesson_id)
    if 'course_id' in changes:
        _check_course(db, lesson.tutor_id, changes['course_id'])
    for field, value in changes.items():
        if field not in LESSON_UPDATABLE_FIELDS:
            continue
        if field == 'lesson_date' and value is None:
            raise ServiceValidationError('date cannot be empty')
        if field == 'start_time':
            value = normalize_start_time(value)
        setattr(lesson, field, value)
    if student_ids is not None:
        _replace_students(db, lesson, student_ids)
    db.commit()
    invalidate_revenue_cache()
    logger.info('lesson_updated lesson_id=%s fields=%s', lesson_id, ','.join(sorted(changes)))
    return get_lesson(db, lesson_id)


def delete_lesson(db: Session, lesson_id: int) -> None:
    lesson = get_lesson(db, lesson_id)
    db.delete(lesson)
    db.commit()
    invalidate_revenue_cache()
    logger.info('lesson_deleted lesson_id=%s', lesson_id)


def set_comment(db: Session, lesson_id: int, comment: str | None) -> Lesson:
    if comment is not None and not comment.strip():
        raise ServiceValidationError('Comment is required and must be a string')
    lesson = get_lesson(db, lesson_id)
    lesson.tutor_comment = comment
    db.commit()
    db.refresh(lesson)
    logger.info('lesson_comment_%s lesson_id=%s', 'set' if comment is not None else 'cleared', lesson_id)
    return lesson
