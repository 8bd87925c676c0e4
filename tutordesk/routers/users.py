from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tutordesk.core.router_guard import assert_self, require_auth_user
from tutordesk.db import get_db
from tutordesk.errors import http_error
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.schemas import UserUpdateRequest
from tutordesk.services import user_service


router = APIRouter(prefix='/users', tags=['Users'], route_class=EndpointNameRoute)


@router.get('/{user_id}')
def get_user(user_id: int, user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    assert_self(user, user_id)
    try:
        return user_service.serialize_user(user_service.get_user(db, user_id))
    except LookupError as exc:
        raise http_error(exc) from exc


@router.patch('/{user_id}')
def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    assert_self(user, user_id)
    try:
        updated = user_service.update_user(db, user_id, payload.model_dump(exclude_unset=True))
    except LookupError as exc:
        raise http_error(exc) from exc
    return user_service.serialize_user(updated)
