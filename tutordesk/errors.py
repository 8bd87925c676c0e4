from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class ServiceValidationError(ValueError):
    """Raised when a request payload or query is missing or malformed."""


class AuthenticationError(ValueError):
    """Raised when credentials do not match."""


class PermissionDeniedError(ValueError):
    """Raised when the caller may not touch the target row."""


class ConflictError(ValueError):
    """Raised when a write would duplicate an existing row."""


class NotFoundError(LookupError):
    pass


def http_error(exc: Exception) -> HTTPException:
    """Translate a service exception into the HTTP status the routers return."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc) or 'Not found')
    if isinstance(exc, AuthenticationError):
        return HTTPException(status_code=401, detail=str(exc) or 'Unauthorized')
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(exc) or 'Forbidden')
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc) or 'Conflict')
    return HTTPException(status_code=400, detail=str(exc) or 'Bad request')


def error_body(message: str, details=None) -> dict:
    body = {'error': message}
    if details is not None:
        body['details'] = details
    return body


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict) and 'error' in detail:
        body = error_body(str(detail['error']), detail.get('details'))
    elif isinstance(detail, str):
        body = error_body(detail)
    else:
        body = error_body('Request failed', jsonable_encoder(detail))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, 'headers', None))


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
    logger.info('request_invalid path=%s errors=%s', request.url.path, len(errors))
    return JSONResponse(status_code=400, content=error_body('Invalid request', errors))


async def _integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning('integrity_conflict path=%s error=%s', request.url.path, exc.orig)
    return JSONResponse(status_code=409, content=error_body('Conflict with existing data'))


async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception('request_failed path=%s method=%s', request.url.path, request.method)
    return JSONResponse(status_code=500, content=error_body('Internal server error'))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(IntegrityError, _integrity_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
