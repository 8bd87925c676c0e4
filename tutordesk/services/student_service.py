from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from tutordesk.cache import cache
from tutordesk.core.time_provider import utc_now
from tutordesk.errors import ConflictError, NotFoundError, PermissionDeniedError, ServiceValidationError
from tutordesk.models import Role, Student, User


logger = logging.getLogger(__name__)

REVENUE_CACHE_PREFIX = 'revenue'
ACTIVE_WINDOW_HOURS = 24
RECENT_WINDOW_HOURS = 48

STUDENT_UPDATABLE_FIELDS = {
    'first_name',
    'last_name',
    'age',
    'email',
    'grade',
    'contact',
    'phone_number',
    'profile_photo',
    'hourly_rate',
    'onboarding_completed',
}


def invalidate_revenue_cache() -> None:
    cache.invalidate_prefix(REVENUE_CACHE_PREFIX)


def student_status(last_activity: datetime | None, now: datetime | None = None) -> str:
    """``active`` within a day of the last activity, ``recent`` within two, else ``absent``."""
    if last_activity is None:
        return 'absent'
    elapsed_hours = ((now or utc_now()) - last_activity).total_seconds() / 3600
    if elapsed_hours <= ACTIVE_WINDOW_HOURS:
        return 'active'
    if elapsed_hours <= RECENT_WINDOW_HOURS:
        return 'recent'
    return 'absent'


def serialize_student(student: Student, *, now: datetime | None = None) -> dict:
    return {
        'id': student.id,
        'tutorId': student.tutor_id,
        'userId': student.user_id,
        'firstName': student.first_name,
        'lastName': student.last_name,
        'age': student.age,
        'email': student.email,
        'grade': student.grade,
        'contact': student.contact,
        'phoneNumber': student.phone_number,
        'profilePhoto': student.profile_photo,
        'hourlyRate': student.hourly_rate,
        'lastActivity': student.last_activity.isoformat() if student.last_activity else None,
        'onboardingCompleted': bool(student.onboarding_completed),
        'createdAt': student.created_at.isoformat() if student.created_at else None,
        'status': student_status(student.last_activity, now),
    }


def serialize_student_brief(student: Student) -> dict:
    """The subset embedded in lessons and courses."""
    return {
        'id': student.id,
        'firstName': student.first_name,
        'lastName': student.last_name,
        'grade': student.grade,
        'hourlyRate': student.hourly_rate,
        'userId': student.user_id,
    }


def _clean_email(email: str | None) -> str | None:
    value = (email or '').strip().lower()
    return value or None


def list_students(db: Session, tutor_id: int) -> list[Student]:
    return (
        db.query(Student)
        .filter(Student.tutor_id == int(tutor_id))
        .order_by(Student.created_at.desc(), Student.id.desc())
        .all()
    )


def list_students_by_email(db: Session, email: str) -> list[Student]:
    clean = _clean_email(email)
    if not clean:
        raise ServiceValidationError('Missing email parameter')
    return (
        db.query(Student)
        .filter(func.lower(Student.email) == clean)
        .order_by(Student.created_at.desc(), Student.id.desc())
        .all()
    )


def get_student(db: Session, student_id: int) -> Student:
    student = db.get(Student, int(student_id))
    if not student:
        raise NotFoundError('Student not found')
    return student


def student_for_user(db: Session, user_id: int) -> Student | None:
    return db.query(Student).filter(Student.user_id == int(user_id)).first()


def create_student(db: Session, *, tutor_id: int, fields: dict) -> Student:
    first_name = (fields.get('first_name') or '').strip()
    last_name = (fields.get('last_name') or '').strip()
    if not first_name or not last_name:
        raise ServiceValidationError('Invalid or missing required fields')
    student = Student(tutor_id=int(tutor_id), first_name=first_name, last_name=last_name)
    for field, value in fields.items():
        if field in STUDENT_UPDATABLE_FIELDS and field not in ('first_name', 'last_name'):
            setattr(student, field, value)
    student.email = _clean_email(student.email)
    db.add(student)
    db.commit()
    db.refresh(student)
    invalidate_revenue_cache()
    logger.info('student_created student_id=%s tutor_id=%s', student.id, tutor_id)
    return student


def create_student_for_user(db: Session, *, user_id: int, tutor_id: int | None = None) -> Student:
    user = db.get(User, int(user_id))
    if not user:
        raise NotFoundError('User not found')
    if student_for_user(db, user.id):
        raise ConflictError('Student already exists for this user')
    if user.role != Role.STUDENT.value:
        raise ServiceValidationError('User is not a student')
    student = Student(
        user_id=user.id,
        tutor_id=tutor_id,
        first_name=user.first_name or '',
        last_name=user.last_name or '',
        email=_clean_email(user.email),
        phone_number=user.phone_number,
        profile_photo=user.profile_photo,
    )
    db.add(student)
    db.commit()
    db.refresh(student)
    logger.info('student_created_for_user student_id=%s user_id=%s', student.id, user.id)
    return student


def update_student(db: Session, student_id: int, changes: dict) -> Student:
    student = get_student(db, student_id)
    for field, value in changes.items():
        if field not in STUDENT_UPDATABLE_FIELDS:
            continue
        if field in ('first_name', 'last_name') and not (value or '').strip():
            raise ServiceValidationError(f'{field} cannot be empty')
        if field == 'email':
            value = _clean_email(value)
        setattr(student, field, value)
    db.commit()
    db.refresh(student)
    invalidate_revenue_cache()
    logger.info('student_updated student_id=%s fields=%s', student.id, ','.join(sorted(changes)))
    return student


def delete_student(db: Session, student_id: int) -> None:
    student = get_student(db, student_id)
    db.delete(student)
    db.commit()
    invalidate_revenue_cache()
    logger.info('student_deleted student_id=%s', student_id)


def touch_activity(db: Session, student_id: int, *, now: datetime | None = None) -> Student:
    student = get_student(db, student_id)
    student.last_activity = now or utc_now()
    db.commit()
    db.refresh(student)
    return student


def get_student_tutor(db: Session, student_id: int) -> dict:
    student = get_student(db, student_id)
    tutor = student.tutor
    if not tutor:
        raise NotFoundError('No tutor assigned to this student')
    return {
        'tutor': {
            'id': tutor.id,
            'firstName': tutor.first_name,
            'lastName': tutor.last_name,
            'email': tutor.email,
            'phoneNumber': tutor.phone_number,
            'profilePhoto': tutor.profile_photo,
        },
        'studentId': student.id,
    }


def students_owned_by(db: Session, tutor_id: int, student_ids: list[int]) -> list[Student]:
    """Load the given students, rejecting any that belong to another tutor."""
    unique_ids = list(dict.fromkeys(int(student_id) for student_id in student_ids))
    if not unique_ids:
        return []
    rows = db.query(Student).filter(Student.id.in_(unique_ids)).all()
    by_id = {row.id: row for row in rows}
    missing = [student_id for student_id in unique_ids if student_id not in by_id]
    if missing:
        raise NotFoundError(f'Student not found: {missing[0]}')
    foreign = [row.id for row in rows if row.tutor_id != int(tutor_id)]
    if foreign:
        raise PermissionDeniedError(f'Student {foreign[0]} belongs to another tutor')
    return [by_id[student_id] for student_id in unique_ids]
