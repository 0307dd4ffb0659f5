"""Responder chat: message persistence wired to the broadcast hub."""

import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session, joinedload

from .errors import ForbiddenError, NotFoundError, ValidationError, storage_guard
from .models import MESSAGE_MAX_LENGTH, Message, User
from .realtime import ConnectionManager
from .timeutil import utcnow

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ("text", "system")


def validate_body(body: str) -> str:
    """Return the trimmed body or raise ValidationError."""
    if body is None or not body.strip():
        raise ValidationError("Message cannot be empty")
    if len(body) > MESSAGE_MAX_LENGTH:
        raise ValidationError(f"Message too long (max {MESSAGE_MAX_LENGTH} characters)")
    return body.strip()


def list_messages(db: Session, viewer: User, page: int = 1, limit: int = 50) -> List[Dict[str, Any]]:
    """
    One page of history, newest page first, each page returned oldest-first.

    ``is_own_message`` is computed for ``viewer``.
    """
    page = max(page, 1)
    offset = (page - 1) * limit
    with storage_guard(db, "list messages"):
        rows = (
            db.query(Message)
            .options(joinedload(Message.author))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
    return [row.to_dict(viewer_id=viewer.id) for row in reversed(rows)]


def send_message(
    db: Session,
    hub: ConnectionManager,
    sender: User,
    body: str,
    message_type: str = "text",
) -> Dict[str, Any]:
    """Persist a message from ``sender`` and push it to every open stream."""
    text = validate_body(body)
    if message_type not in MESSAGE_TYPES:
        raise ValidationError(f"Unknown message type: {message_type}")

    message = Message(user_id=sender.id, message=text, message_type=message_type, created_at=utcnow())
    with storage_guard(db, "send message"):
        db.add(message)
        db.commit()
        db.refresh(message)
        record = message.to_dict(viewer_id=sender.id)

    delivered = hub.broadcast_message(record)
    logger.info("Message %s from %s delivered to %d streams", message.id, sender.username, delivered)
    return record


def delete_message(db: Session, hub: ConnectionManager, message_id: int, requester: User) -> None:
    """
    Hard-delete a message; only its author or an admin may do so.

    The deletion event is pushed only after the row is gone.
    """
    with storage_guard(db, "load message"):
        message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")

    if message.user_id != requester.id and not requester.is_admin:
        raise ForbiddenError("Permission denied")

    with storage_guard(db, "delete message"):
        db.delete(message)
        db.commit()

    hub.broadcast_deletion(message_id)
    logger.info("Message %s deleted by %s", message_id, requester.username)


def relay_typing(hub: ConnectionManager, user: User, is_typing: bool) -> int:
    """Typing state is never stored; it is only relayed."""
    return hub.broadcast_typing(user.id, user.username, is_typing)
