from __future__ import annotations

import logging

from sqlalchemy.orm import Session, selectinload

from tutordesk.errors import ConflictError, NotFoundError, ServiceValidationError
from tutordesk.models import Course, CourseStudent, Lesson, LessonStudent
from tutordesk.services.lesson_service import normalize_start_time
from tutordesk.services.student_service import (
    get_student,
    invalidate_revenue_cache,
    serialize_student_brief,
    students_owned_by,
)


logger = logging.getLogger(__name__)

COURSE_UPDATABLE_FIELDS = {'title', 'description', 'zoom_link'}


def serialize_course(course: Course) -> dict:
    students = [serialize_student_brief(student) for student in course.students]
    return {
        'id': course.id,
        'tutorId': course.tutor_id,
        'title': course.title,
        'description': course.description,
        'zoomLink': course.zoom_link,
        'createdAt': course.created_at.isoformat() if course.created_at else None,
        'students': students,
        'studentIds': [student['id'] for student in students],
        'lessonCount': len(course.lessons),
    }


def _course_query(db: Session):
    return db.query(Course).options(selectinload(Course.students), selectinload(Course.lessons))


def list_courses(db: Session, *, tutor_id: int | None = None, student_id: int | None = None) -> list[Course]:
    if tutor_id is None and student_id is None:
        raise ServiceValidationError('Tutor ID is required')
    query = _course_query(db)
    if tutor_id is not None:
        query = query.filter(Course.tutor_id == int(tutor_id))
    if student_id is not None:
        query = query.filter(Course.student_links.any(CourseStudent.student_id == int(student_id)))
    return query.order_by(Course.created_at.desc(), Course.id.desc()).all()


def get_course(db: Session, course_id: int) -> Course:
    course = _course_query(db).filter(Course.id == int(course_id)).first()
    if not course:
        raise NotFoundError('Course not found')
    return course


def create_course(
    db: Session,
    *,
    tutor_id: int,
    fields: dict,
    student_ids: list[int],
    first_lesson: dict | None = None,
) -> tuple[Course, list[Lesson]]:
    """Create a course, enroll the given students and optionally plan one lesson per student."""
    title = (fields.get('title') or '').strip()
    if not title:
        raise ServiceValidationError('title is required')
    students = students_owned_by(db, tutor_id, student_ids)
    if first_lesson is not None:
        missing = [key for key in ('lesson_date', 'duration', 'start_time') if not first_lesson.get(key)]
        if missing:
            raise ServiceValidationError(f'Missing lesson fields: {", ".join(missing)}')

    course = Course(
        tutor_id=int(tutor_id),
        title=title,
        description=fields.get('description'),
        zoom_link=fields.get('zoom_link'),
    )
    db.add(course)
    db.flush()
    for student in students:
        db.add(CourseStudent(course_id=course.id, student_id=student.id))

    lessons: list[Lesson] = []
    if first_lesson is not None:
        for student in students:
            lesson = Lesson(
                tutor_id=int(tutor_id),
                course_id=course.id,
                title=title,
                description=fields.get('description'),
                lesson_date=first_lesson['lesson_date'],
                start_time=normalize_start_time(first_lesson['start_time']),
                duration=first_lesson['duration'],
                zoom_link=fields.get('zoom_link'),
                subject=first_lesson.get('subject'),
            )
            lesson.student_links.append(LessonStudent(student=student))
            db.add(lesson)
            lessons.append(lesson)
    db.commit()
    if lessons:
        invalidate_revenue_cache()
    logger.info(
        'course_created course_id=%s tutor_id=%s students=%s lessons=%s',
        course.id,
        tutor_id,
        len(students),
        len(lessons),
    )
    return get_course(db, course.id), lessons


def update_course(db: Session, course_id: int, changes: dict) -> Course:
    course = get_course(db, course_id)
    for field, value in changes.items():
        if field not in COURSE_UPDATABLE_FIELDS:
            continue
        if field == 'title' and not (value or '').strip():
            raise ServiceValidationError('title cannot be empty')
        setattr(course, field, value)
    db.commit()
    invalidate_revenue_cache()
    logger.info('course_updated course_id=%s fields=%s', course_id, ','.join(sorted(changes)))
    return get_course(db, course_id)


def delete_course(db: Session, course_id: int) -> None:
    course = get_course(db, course_id)
    # Lessons survive without a course.
    for lesson in list(course.lessons):
        lesson.course_id = None
    db.delete(course)
    db.commit()
    invalidate_revenue_cache()
    logger.info('course_deleted course_id=%s', course_id)


def enroll_student(db: Session, course_id: int, student_id: int) -> Course:
    course = get_course(db, course_id)
    student = get_student(db, student_id)
    students_owned_by(db, course.tutor_id, [student.id])
    exists = (
        db.query(CourseStudent)
        .filter(CourseStudent.course_id == course.id, CourseStudent.student_id == student.id)
        .first()
    )
    if exists:
        raise ConflictError('Student already enrolled in this course')
    db.add(CourseStudent(course_id=course.id, student_id=student.id))
    db.commit()
    logger.info('course_enrolled course_id=%s student_id=%s', course.id, student.id)
    return get_course(db, course.id)


def unenroll_student(db: Session, course_id: int, student_id: int) -> Course:
    course = get_course(db, course_id)
    link = (
        db.query(CourseStudent)
        .filter(CourseStudent.course_id == course.id, CourseStudent.student_id == int(student_id))
        .first()
    )
    if not link:
        raise NotFoundError('Student is not enrolled in this course')
    db.delete(link)
    db.commit()
    logger.info('course_unenrolled course_id=%s student_id=%s', course.id, student_id)
    return get_course(db, course.id)
