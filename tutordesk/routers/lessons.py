from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tutordesk.core.router_guard import (
    assert_lesson_access,
    assert_tutor_scope,
    is_tutor,
    require_auth_user,
    require_role,
)
from tutordesk.db import get_db
from tutordesk.errors import http_error
from tutordesk.models import Role
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.schemas import (
    LessonCommentByIdRequest,
    LessonCommentDeleteRequest,
    LessonCommentRequest,
    LessonCreateRequest,
    LessonUpdateRequest,
)
from tutordesk.services import lesson_service
from tutordesk.services.student_service import student_for_user


router = APIRouter(prefix='/lessons', tags=['Lessons'], route_class=EndpointNameRoute)


def _load_lesson(db: Session, lesson_id: int):
    try:
        return lesson_service.get_lesson(db, lesson_id)
    except LookupError as exc:
        raise http_error(exc) from exc


@router.get('')
def list_lessons(
    tutor_id: int | None = Query(default=None, alias='tutorId'),
    course_id: int | None = Query(default=None, alias='courseId'),
    student_id: int | None = Query(default=None, alias='studentId'),
    start_date: str | None = Query(default=None, alias='startDate'),
    end_date: str | None = Query(default=None, alias='endDate'),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    if is_tutor(user):
        tutor_id = tutor_id if tutor_id is not None else user['user_id']
        assert_tutor_scope(user, tutor_id)
    else:
        own = student_for_user(db, user['user_id'])
        if not own or (student_id is not None and student_id != own.id):
            raise HTTPException(status_code=403, detail='Forbidden')
        student_id = own.id
    try:
        rows = lesson_service.list_lessons(
            db,
            tutor_id=tutor_id,
            course_id=course_id,
            student_id=student_id,
            start_date=start_date,
            end_date=end_date,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return [lesson_service.serialize_lesson(row) for row in rows]


@router.post('', status_code=201)
def create_lesson(
    payload: LessonCreateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    require_role(user, {Role.TUTOR.value})
    tutor_id = payload.tutor_id if payload.tutor_id is not None else user['user_id']
    assert_tutor_scope(user, tutor_id)
    fields = payload.model_dump(exclude={'tutor_id', 'student_id', 'student_ids'})
    student_ids = lesson_service.merge_student_ids(payload.student_id, payload.student_ids)
    try:
        lesson = lesson_service.create_lesson(db, tutor_id=tutor_id, fields=fields, student_ids=student_ids)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return lesson_service.serialize_lesson(lesson)


@router.put('/comment')
def set_lesson_comment_by_body(
    payload: LessonCommentByIdRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    return _set_comment(db, user, payload.lesson_id, payload.tutor_comment)


@router.delete('/comment')
def clear_lesson_comment_by_body(
    payload: LessonCommentDeleteRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    return _set_comment(db, user, payload.lesson_id, None)


@router.get('/{lesson_id}')
def get_lesson(lesson_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    lesson = _load_lesson(db, lesson_id)
    assert_lesson_access(user, lesson)
    return lesson_service.serialize_lesson(lesson)


@router.patch('/{lesson_id}')
def update_lesson(
    lesson_id: int,
    payload: LessonUpdateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    lesson = _load_lesson(db, lesson_id)
    assert_lesson_access(user, lesson, write=True)
    changes = payload.model_dump(exclude_unset=True)
    student_ids = None
    if 'student_id' in changes or 'student_ids' in changes:
        student_ids = lesson_service.merge_student_ids(changes.pop('student_id', None), changes.pop('student_ids', None))
    try:
        lesson = lesson_service.update_lesson(db, lesson_id, changes, student_ids)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return lesson_service.serialize_lesson(lesson)


@router.delete('/{lesson_id}')
def delete_lesson(lesson_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    lesson = _load_lesson(db, lesson_id)
    assert_lesson_access(user, lesson, write=True)
    lesson_service.delete_lesson(db, lesson_id)
    return {'success': True}


@router.put('/{lesson_id}/comment')
def set_lesson_comment(
    lesson_id: int,
    payload: LessonCommentRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    return _set_comment(db, user, lesson_id, payload.tutor_comment)


@router.delete('/{lesson_id}/comment')
def clear_lesson_comment(lesson_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    return _set_comment(db, user, lesson_id, None)


def _set_comment(db: Session, user: dict, lesson_id: int, comment: str | None) -> dict:
    lesson = _load_lesson(db, lesson_id)
    assert_lesson_access(user, lesson, write=True)
    try:
        lesson = lesson_service.set_comment(db, lesson_id, comment)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return lesson_service.serialize_lesson(lesson)
