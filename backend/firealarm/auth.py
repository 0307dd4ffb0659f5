"""Identity resolution for requests and role checks."""

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .errors import ForbiddenError, UnauthorizedError, storage_guard
from .models import User

logger = logging.getLogger(__name__)


def require_admin(user: Optional[User]) -> User:
    """Raise ForbiddenError unless ``user`` holds the administrator role."""
    if user is None or not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


def resolve_user(db: Session, raw_user_id: Optional[str]) -> User:
    """
    Look up the active user named by the identity header value.

    Anything that does not resolve to an active account is treated as
    "no session".
    """
    if not raw_user_id:
        raise UnauthorizedError()
    try:
        user_id = int(raw_user_id)
    except ValueError:
        raise UnauthorizedError()

    with storage_guard(db, "resolve session user"):
        user = db.get(User, user_id)
    if user is None or not user.is_active:
        logger.info("Rejected identity %r: unknown or inactive user", raw_user_id)
        raise UnauthorizedError()
    return user


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """FastAPI dependency returning the authenticated user."""
    return resolve_user(db, request.headers.get(settings.IDENTITY_HEADER))


def get_admin_user(user: User = Depends(get_current_user)) -> User:
    return require_admin(user)
