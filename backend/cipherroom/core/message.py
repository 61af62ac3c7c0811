import logging
import os

from sqlalchemy.orm import Session

from cipherroom.core.message_logic import from_epoch_ms, retention_cutoff, utc_now
from cipherroom.models.message import Message

logger = logging.getLogger(__name__)

# Each half of a delta is capped; a busier room than this loses the tail
MESSAGE_BATCH_LIMIT = int(os.getenv("MESSAGE_BATCH_LIMIT", "100"))
DELETE_BATCH_LIMIT = int(os.getenv("DELETE_BATCH_LIMIT", "100"))


def store_message(
    db: Session,
    room_id: str,
    content: str,
    sender: str = "anonymous",
    custom_id: str | None = None,
) -> Message:
    """
    Insert one message row and return it with its server id and timestamps.

    A repeated custom_id within the same room returns the row stored the
    first time, so a retried send never produces a second message.
    """
    if custom_id:
        existing = (
            db.query(Message)
            .filter(Message.room_id == room_id, Message.custom_id == custom_id)
            .first()
        )
        if existing is not None:
            return existing

    now = utc_now()
    message = Message(
        room_id=room_id,
        content=content,
        sender=sender or "anonymous",
        custom_id=custom_id,
        created_at=now,
        updated_at=now,
        deleted=False,
    )

    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def fetch_delta(db: Session, room_id: str, since_ms: float = 0):
    """
    Return (messages, deletes) for a room since the given watermark.

    messages: live rows created after the watermark, oldest first.
    deletes: soft-deleted rows updated after the watermark, oldest first.
    """
    since = from_epoch_ms(since_ms)

    messages = (
        db.query(Message)
        .filter(
            Message.room_id == room_id,
            Message.deleted.is_(False),
            Message.created_at > since,
        )
        .order_by(Message.created_at.asc())
        .limit(MESSAGE_BATCH_LIMIT)
        .all()
    )

    deletes = (
        db.query(Message)
        .filter(
            Message.room_id == room_id,
            Message.deleted.is_(True),
            Message.updated_at > since,
        )
        .order_by(Message.updated_at.asc())
        .limit(DELETE_BATCH_LIMIT)
        .all()
    )

    return messages, deletes


def soft_delete_messages(db: Session, room_id: str, message_ids: list[str]) -> list[str]:
    """Flag live messages of one room as deleted; returns the ids that flipped."""
    if not message_ids:
        return []

    rows = (
        db.query(Message)
        .filter(
            Message.room_id == room_id,
            Message.id.in_(set(message_ids)),
            Message.deleted.is_(False),
        )
        .all()
    )

    now = utc_now()
    for row in rows:
        row.deleted = True
        row.updated_at = now

    db.commit()
    return [row.id for row in rows]


def purge_expired_messages(db: Session, now=None) -> int:
    """Hard-delete every message older than the retention window."""
    cutoff = retention_cutoff(now)
    purged = (
        db.query(Message)
        .filter(Message.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info("Purged %d expired messages (cutoff %s)", purged, cutoff.isoformat())
    return purged
