from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tutordesk.config import settings
from tutordesk.core.router_guard import require_auth_user, resolve_token
from tutordesk.core.time_provider import default_time_provider
from tutordesk.db import get_db
from tutordesk.errors import http_error
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.schemas import LoginRequest, RegisterRequest
from tutordesk.services.auth_service import clear_session_token, login, register


router = APIRouter(prefix='/auth', tags=['Auth'], route_class=EndpointNameRoute)


def _session_cookie_response(data: dict, status_code: int = 200) -> JSONResponse:
    response = JSONResponse(data, status_code=status_code)
    response.set_cookie(
        key='auth_session',
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=settings.app_env == 'production',
        max_age=settings.auth_token_expiry_hours * 3600,
    )
    return response


@router.post('/register', status_code=201)
def auth_register(payload: RegisterRequest, db: Session = Depends(get_db)):
    try:
        data = register(
            db,
            email=payload.email,
            password=payload.password,
            role=payload.role,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone_number=payload.phone_number,
        )
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return _session_cookie_response(data, status_code=201)


@router.post('/login')
def auth_login(payload: LoginRequest, db: Session = Depends(get_db)):
    try:
        data = login(db, payload.email, payload.password)
    except (ValueError, LookupError) as exc:
        raise http_error(exc) from exc
    return _session_cookie_response(data)


@router.post('/keep-alive')
def auth_keep_alive(user: dict = Depends(require_auth_user)):
    return {'status': 'alive', 'timestamp': default_time_provider.now().isoformat()}


@router.post('/logout')
def auth_logout(request: Request):
    token = resolve_token(request)
    if not token:
        raise HTTPException(status_code=401, detail='Unauthorized')
    clear_session_token(token)
    response = JSONResponse({'ok': True})
    response.delete_cookie('auth_session')
    return response
