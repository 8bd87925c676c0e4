from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from tutordesk.errors import NotFoundError
from tutordesk.models import User


logger = logging.getLogger(__name__)

USER_UPDATABLE_FIELDS = {
    'first_name',
    'last_name',
    'phone_number',
    'profile_photo',
    'bio',
    'onboarding_completed',
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_user(user: User) -> dict:
    return {
        'id': user.id,
        'email': user.email,
        'role': user.role,
        'firstName': user.first_name or '',
        'lastName': user.last_name or '',
        'phoneNumber': user.phone_number,
        'profilePhoto': user.profile_photo,
        'bio': user.bio,
        'onboardingCompleted': bool(user.onboarding_completed),
        'createdAt': _iso(user.created_at),
        'updatedAt': _iso(user.updated_at),
    }


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, int(user_id))
    if not user:
        raise NotFoundError('User not found')
    return user


def update_user(db: Session, user_id: int, changes: dict) -> User:
    user = get_user(db, user_id)
    for field, value in changes.items():
        if field in USER_UPDATABLE_FIELDS:
            setattr(user, field, value)
    db.commit()
    db.refresh(user)
    logger.info('user_updated user_id=%s fields=%s', user.id, ','.join(sorted(changes)))
    return user
