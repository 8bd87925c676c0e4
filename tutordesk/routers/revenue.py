from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tutordesk.cache import cache_key, cached_view
from tutordesk.core.router_guard import assert_tutor_scope, require_auth_user
from tutordesk.db import get_db
from tutordesk.errors import http_error
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.services import revenue_service
from tutordesk.services.student_service import REVENUE_CACHE_PREFIX


router = APIRouter(prefix='/revenue', tags=['Revenue'], route_class=EndpointNameRoute)


def _summary_key(
    user: dict | None = None,
    tutor_id: int | None = None,
    range_name: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    course_id: int | None = None,
    student_id: str | None = None,
    **_,
) -> str | None:
    if not user or tutor_id is None:
        return None
    # The caller id is part of the key so a cached summary is only served to the tutor who passed the scope check.
    return cache_key(
        REVENUE_CACHE_PREFIX,
        user['user_id'],
        tutor_id,
        range_name,
        start_date,
        end_date,
        course_id,
        student_id,
    )


@router.get('')
@cached_view(ttl=None, key_builder=_summary_key, tags=(REVENUE_CACHE_PREFIX,))
def revenue_summary(
    tutor_id: int | None = Query(default=None, alias='tutorId'),
    range_name: str | None = Query(default=None, alias='range'),
    start_date: str | None = Query(default=None, alias='startDate'),
    end_date: str | None = Query(default=None, alias='endDate'),
    course_id: int | None = Query(default=None, alias='courseId'),
    student_id: str | None = Query(default=None, alias='studentId'),
    bypass_cache: bool = Query(default=False),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    if tutor_id is None:
        raise HTTPException(status_code=400, detail='Tutor ID is required')
    assert_tutor_scope(user, tutor_id)
    try:
        return revenue_service.revenue_summary(
            db,
            tutor_id=tutor_id,
            range_name=range_name,
            start_date=start_date,
            end_date=end_date,
            course_id=course_id,
            student_id=student_id,
        )
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc


@router.get('/export')
def revenue_export(
    tutor_id: int | None = Query(default=None, alias='tutorId'),
    start_date: str | None = Query(default=None, alias='startDate'),
    end_date: str | None = Query(default=None, alias='endDate'),
    student_id: str | None = Query(default=None, alias='studentId'),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    if tutor_id is None:
        raise HTTPException(status_code=400, detail='Missing parameters: tutorId, startDate, endDate')
    assert_tutor_scope(user, tutor_id)
    try:
        return revenue_service.revenue_export(
            db,
            tutor_id=tutor_id,
            start_date=start_date,
            end_date=end_date,
            student_id=student_id,
        )
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
