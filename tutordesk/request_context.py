from __future__ import annotations

from contextvars import ContextVar


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')
current_user_id: ContextVar[int | None] = ContextVar('current_user_id', default=None)
