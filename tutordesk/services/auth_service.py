from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from tutordesk.config import settings
from tutordesk.core.time_provider import TimeProvider, default_time_provider
from tutordesk.errors import AuthenticationError, ConflictError, NotFoundError, ServiceValidationError
from tutordesk.models import Role, Student, User
from tutordesk.services.user_service import serialize_user


_REVOKED_TOKENS: set[str] = set()
_TOKENS_LOCK = threading.RLock()
logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    return (email or '').strip().lower()


def _mask_email(email: str) -> str:
    local, _, domain = normalize_email(email).partition('@')
    if not domain:
        return '***'
    return f'{local[:1]}***@{domain}'


def hash_password(password: str) -> str:
    if len(password or '') < settings.auth_min_password_length:
        raise ServiceValidationError(f'Password must be at least {settings.auth_min_password_length} characters')
    salt = secrets.token_hex(16)
    iterations = 120000
    derived = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('utf-8'), iterations)
    return f'pbkdf2_sha256${iterations}${salt}${derived.hex()}'


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iter_raw, salt, digest_hex = password_hash.split('$', 3)
        if algo != 'pbkdf2_sha256':
            return False
        iterations = int(iter_raw)
        derived = hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), iterations).hex()
        return hmac.compare_digest(derived, digest_hex)
    except (ValueError, TypeError, AttributeError):
        return False


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


def _sign(signing_input: bytes) -> bytes:
    return hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()


def _encode_jwt(payload: dict) -> str:
    header = {'alg': 'HS256', 'typ': 'JWT'}
    header_part = _b64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))
    payload_part = _b64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    return f'{header_part}.{payload_part}.{_b64url_encode(_sign(signing_input))}'


def _decode_jwt(token: str) -> dict | None:
    try:
        header_part, payload_part, signature_part = token.split('.')
        provided_signature = _b64url_decode(signature_part)
    except (ValueError, UnicodeEncodeError):
        return None

    signing_input = f'{header_part}.{payload_part}'.encode('ascii', errors='replace')
    if not hmac.compare_digest(provided_signature, _sign(signing_input)):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_part).decode('utf-8'))
    except (ValueError, json.JSONDecodeError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None
    return payload


def issue_token(user: User, *, time_provider: TimeProvider = default_time_provider) -> str:
    issued_at = time_provider.now()
    expires_at = issued_at + timedelta(hours=settings.auth_token_expiry_hours)
    return _encode_jwt(
        {
            'sub': user.id,
            'email': user.email,
            'role': user.role,
            'iat': int(issued_at.timestamp()),
            'exp': int(expires_at.timestamp()),
            'jti': secrets.token_hex(8),
        }
    )


def _session_payload(user: User, *, time_provider: TimeProvider) -> dict:
    return {'token': issue_token(user, time_provider=time_provider), 'user': serialize_user(user)}


def validate_session_token(
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict | None:
    if not token:
        return None
    with _TOKENS_LOCK:
        if token in _REVOKED_TOKENS:
            return None

    payload = _decode_jwt(token)
    if not payload:
        return None

    user_id = payload.get('sub')
    role = payload.get('role')
    expires_at = payload.get('exp')
    if user_id is None or not role or not isinstance(expires_at, int):
        return None
    if expires_at <= int(time_provider.now().timestamp()):
        return None

    return {
        'user_id': int(user_id),
        'email': payload.get('email') or '',
        'role': str(role),
        'expires_at': expires_at,
    }


def clear_session_token(token: str | None) -> None:
    if not token:
        return
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.add(token)


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(func.lower(User.email) == normalize_email(email)).first()


def register(
    db: Session,
    *,
    email: str,
    password: str,
    role: str = Role.TUTOR.value,
    first_name: str = '',
    last_name: str = '',
    phone_number: str | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_email = normalize_email(email)
    if '@' not in clean_email:
        raise ServiceValidationError('A valid email is required')
    if role not in (Role.TUTOR.value, Role.STUDENT.value):
        raise ServiceValidationError('Role must be tutor or student')
    if find_user_by_email(db, clean_email):
        raise ConflictError('User already exists')

    user = User(
        email=clean_email,
        password_hash=hash_password(password),
        role=role,
        first_name=(first_name or '').strip(),
        last_name=(last_name or '').strip(),
        phone_number=phone_number,
    )
    db.add(user)
    db.flush()

    existing_student = (
        db.query(Student)
        .filter(func.lower(Student.email) == clean_email, Student.user_id.is_(None))
        .order_by(Student.created_at.asc())
        .first()
    )
    if existing_student:
        existing_student.user_id = user.id
        logger.info('auth_register_linked_student user_id=%s student_id=%s', user.id, existing_student.id)
    elif role == Role.STUDENT.value:
        db.add(
            Student(
                user_id=user.id,
                tutor_id=None,
                first_name=user.first_name,
                last_name=user.last_name,
                email=clean_email,
                phone_number=phone_number,
            )
        )
    db.commit()
    db.refresh(user)
    logger.info('auth_register_success user_id=%s role=%s email=%s', user.id, user.role, _mask_email(clean_email))
    return _session_payload(user, time_provider=time_provider)


def login(
    db: Session,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_email = normalize_email(email)
    if not clean_email or not password:
        raise ServiceValidationError('Email and password are required')
    user = find_user_by_email(db, clean_email)
    if not user:
        logger.info('auth_login_unknown email=%s', _mask_email(clean_email))
        raise NotFoundError('User not found')
    if not user.password_hash or not verify_password(password, user.password_hash):
        logger.warning('auth_login_failed user_id=%s', user.id)
        raise AuthenticationError('Invalid credentials')
    logger.info('auth_login_success user_id=%s role=%s', user.id, user.role)
    return _session_payload(user, time_provider=time_provider)
