"""Error taxonomy shared by the incident and chat services."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class FireAlarmError(Exception):
    """Base class; ``status_code`` is the HTTP status the API maps it to."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(FireAlarmError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(FireAlarmError):
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(FireAlarmError):
    status_code = 403
    default_message = "Permission denied"


class NotFoundError(FireAlarmError):
    status_code = 404
    default_message = "Not found"


class StorageError(FireAlarmError):
    status_code = 500
    default_message = "Storage unavailable, please try again later"


@contextmanager
def storage_guard(db: Session, operation: str) -> Iterator[None]:
    """
    Map driver failures inside the block to StorageError.

    The session is rolled back so it can be reused; the original exception is
    logged with its traceback and chained, never shown to the caller.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Storage failure during %s", operation)
        raise StorageError() from exc
