from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tutordesk.core.router_guard import (
    assert_course_access,
    assert_tutor_scope,
    is_tutor,
    require_auth_user,
    require_role,
)
from tutordesk.db import get_db
from tutordesk.errors import http_error
from tutordesk.models import Role
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.schemas import CourseCreateRequest, CourseUpdateRequest
from tutordesk.services import course_service
from tutordesk.services.lesson_service import serialize_lesson
from tutordesk.services.student_service import student_for_user


router = APIRouter(prefix='/courses', tags=['Courses'], route_class=EndpointNameRoute)


def _load_course(db: Session, course_id: int):
    try:
        return course_service.get_course(db, course_id)
    except LookupError as exc:
        raise http_error(exc) from exc


@router.get('')
def list_courses(
    tutor_id: int | None = Query(default=None, alias='tutorId'),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    if is_tutor(user):
        tutor_id = tutor_id if tutor_id is not None else user['user_id']
        assert_tutor_scope(user, tutor_id)
        rows = course_service.list_courses(db, tutor_id=tutor_id)
    else:
        student = student_for_user(db, user['user_id'])
        if not student:
            return []
        rows = course_service.list_courses(db, tutor_id=tutor_id, student_id=student.id)
    return [course_service.serialize_course(row) for row in rows]


@router.post('', status_code=201)
def create_course(
    payload: CourseCreateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    require_role(user, {Role.TUTOR.value})
    tutor_id = payload.tutor_id if payload.tutor_id is not None else user['user_id']
    assert_tutor_scope(user, tutor_id)
    first_lesson = None
    if payload.lesson_date or payload.duration or payload.start_time:
        first_lesson = {
            'lesson_date': payload.lesson_date,
            'start_time': payload.start_time,
            'duration': payload.duration,
            'subject': payload.subject,
        }
    try:
        course, lessons = course_service.create_course(
            db,
            tutor_id=tutor_id,
            fields={'title': payload.title, 'description': payload.description, 'zoom_link': payload.zoom_link},
            student_ids=payload.student_ids,
            first_lesson=first_lesson,
        )
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return {
        'course': course_service.serialize_course(course),
        'lessons': [serialize_lesson(lesson) for lesson in lessons],
    }


@router.get('/{course_id}')
def get_course(course_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    course = _load_course(db, course_id)
    assert_course_access(user, course)
    return course_service.serialize_course(course)


@router.patch('/{course_id}')
def update_course(
    course_id: int,
    payload: CourseUpdateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    course = _load_course(db, course_id)
    assert_course_access(user, course, write=True)
    try:
        course = course_service.update_course(db, course_id, payload.model_dump(exclude_unset=True))
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return course_service.serialize_course(course)


@router.delete('/{course_id}')
def delete_course(course_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    course = _load_course(db, course_id)
    assert_course_access(user, course, write=True)
    course_service.delete_course(db, course_id)
    return {'success': True}


@router.post('/{course_id}/students/{student_id}', status_code=201)
def enroll_student(
    course_id: int,
    student_id: int,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    course = _load_course(db, course_id)
    assert_course_access(user, course, write=True)
    try:
        course = course_service.enroll_student(db, course_id, student_id)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return course_service.serialize_course(course)


@router.delete('/{course_id}/students/{student_id}')
def unenroll_student(
    course_id: int,
    student_id: int,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    course = _load_course(db, course_id)
    assert_course_access(user, course, write=True)
    try:
        course = course_service.unenroll_student(db, course_id, student_id)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return course_service.serialize_course(course)
