from __future__ import annotations

from typing import Iterable

from fastapi import HTTPException, Request

from tutordesk.models import Course, Lesson, Role, Student
from tutordesk.request_context import current_user_id
from tutordesk.services.auth_service import validate_session_token


def resolve_token(request: Request) -> str | None:
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    token = request.cookies.get('auth_session')
    if token:
        return token
    return None


def require_auth_user(request: Request) -> dict:
    session = validate_session_token(resolve_token(request))
    if not session:
        raise HTTPException(status_code=401, detail='Unauthorized')
    user_id = int(session.get('user_id') or 0)
    if user_id <= 0:
        raise HTTPException(status_code=401, detail='Unauthorized')
    current_user_id.set(user_id)
    return {
        'user_id': user_id,
        'role': str(session.get('role') or '').strip().lower(),
        'email': str(session.get('email') or ''),
    }


def require_role(user: dict, allowed_roles: set[str] | Iterable[str]) -> None:
    normalized = {str(role).strip().lower() for role in allowed_roles}
    if str(user.get('role') or '').strip().lower() not in normalized:
        raise HTTPException(status_code=403, detail='Forbidden')


def is_tutor(user: dict) -> bool:
    return user.get('role') == Role.TUTOR.value


def assert_tutor_scope(user: dict, tutor_id: int | None) -> None:
    """Only the tutor themself may act on rows filed under ``tutor_id``."""
    if not is_tutor(user) or tutor_id is None or int(tutor_id) != int(user['user_id']):
        raise HTTPException(status_code=403, detail='Forbidden')


def assert_self(user: dict, user_id: int) -> None:
    if int(user_id) != int(user['user_id']):
        raise HTTPException(status_code=403, detail='Forbidden')


def assert_student_access(user: dict, student: Student, *, allow_self: bool = True) -> None:
    if is_tutor(user) and student.tutor_id == user['user_id']:
        return
    if allow_self and student.user_id is not None and student.user_id == user['user_id']:
        return
    raise HTTPException(status_code=403, detail='Forbidden')


def assert_course_access(user: dict, course: Course, *, write: bool = False) -> None:
    if is_tutor(user) and course.tutor_id == user['user_id']:
        return
    if not write and any(student.user_id == user['user_id'] for student in course.students):
        return
    raise HTTPException(status_code=403, detail='Forbidden')


def assert_lesson_access(user: dict, lesson: Lesson, *, write: bool = False) -> None:
    if is_tutor(user) and lesson.tutor_id == user['user_id']:
        return
    if not write and any(student.user_id == user['user_id'] for student in lesson.students):
        return
    raise HTTPException(status_code=403, detail='Forbidden')
