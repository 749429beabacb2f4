"""
Per-client rate limiting (slowapi). Register and login get tighter limits than the
global default to slow down credential stuffing and signup spam.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from learning_planner.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

REGISTER_LIMIT = settings.rate_limit_register
LOGIN_LIMIT = settings.rate_limit_login
