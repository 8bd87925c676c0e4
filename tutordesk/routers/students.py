from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tutordesk.core.router_guard import (
    assert_student_access,
    assert_tutor_scope,
    is_tutor,
    require_auth_user,
    require_role,
)
from tutordesk.db import get_db
from tutordesk.errors import http_error
from tutordesk.models import Role
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.schemas import StudentCreateRequest, StudentForUserRequest, StudentUpdateRequest
from tutordesk.services import student_service


router = APIRouter(prefix='/students', tags=['Students'], route_class=EndpointNameRoute)


def _load_student(db: Session, student_id: int):
    try:
        return student_service.get_student(db, student_id)
    except LookupError as exc:
        raise http_error(exc) from exc


@router.get('')
def list_students(
    tutor_id: int | None = Query(default=None, alias='tutorId'),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    if tutor_id is None:
        raise HTTPException(status_code=400, detail='Missing tutorId')
    assert_tutor_scope(user, tutor_id)
    return [student_service.serialize_student(row) for row in student_service.list_students(db, tutor_id)]


@router.get('/email')
def list_students_by_email(
    email: str = Query(default=''),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        rows = student_service.list_students_by_email(db, email)
    except ValueError as exc:
        raise http_error(exc) from exc
    if not is_tutor(user):
        rows = [row for row in rows if row.user_id == user['user_id'] or (row.email or '') == user['email'].lower()]
    else:
        rows = [row for row in rows if row.tutor_id == user['user_id']]
    return [student_service.serialize_student(row) for row in rows]


@router.post('', status_code=201)
def create_student(
    payload: StudentCreateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    require_role(user, {Role.TUTOR.value})
    tutor_id = payload.tutor_id if payload.tutor_id is not None else user['user_id']
    assert_tutor_scope(user, tutor_id)
    fields = payload.model_dump(exclude={'tutor_id'}, exclude_unset=True)
    try:
        student = student_service.create_student(db, tutor_id=tutor_id, fields=fields)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return student_service.serialize_student(student)


@router.post('/create-for-user', status_code=201)
def create_student_for_user(
    payload: StudentForUserRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    if is_tutor(user):
        if payload.tutor_id is not None:
            assert_tutor_scope(user, payload.tutor_id)
    elif payload.user_id != user['user_id'] or payload.tutor_id is not None:
        raise HTTPException(status_code=403, detail='Forbidden')
    try:
        student = student_service.create_student_for_user(db, user_id=payload.user_id, tutor_id=payload.tutor_id)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return student_service.serialize_student(student)


@router.get('/{student_id}')
def get_student(student_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    student = _load_student(db, student_id)
    assert_student_access(user, student)
    return student_service.serialize_student(student)


@router.patch('/{student_id}')
def update_student(
    student_id: int,
    payload: StudentUpdateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    student = _load_student(db, student_id)
    assert_student_access(user, student)
    changes = payload.model_dump(exclude_unset=True)
    if not is_tutor(user):
        # Rates are the tutor's call.
        changes.pop('hourly_rate', None)
    try:
        student = student_service.update_student(db, student_id, changes)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return student_service.serialize_student(student)


@router.delete('/{student_id}')
def delete_student(student_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    student = _load_student(db, student_id)
    assert_student_access(user, student, allow_self=False)
    student_service.delete_student(db, student_id)
    return {'success': True}


@router.put('/{student_id}/activity')
def touch_student_activity(student_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    student = _load_student(db, student_id)
    assert_student_access(user, student)
    student = student_service.touch_activity(db, student_id)
    return {
        'id': student.id,
        'firstName': student.first_name,
        'lastName': student.last_name,
        'lastActivity': student.last_activity.isoformat() if student.last_activity else None,
    }


@router.get('/{student_id}/tutor')
def get_student_tutor(student_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    student = _load_student(db, student_id)
    assert_student_access(user, student)
    try:
        return student_service.get_student_tutor(db, student_id)
    except LookupError as exc:
        raise http_error(exc) from exc
