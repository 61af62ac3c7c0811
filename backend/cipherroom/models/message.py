import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from cipherroom.core.message_logic import utc_now
from cipherroom.models.base import Base


ROOM_ID_MAX_LENGTH = 128


def generate_message_id() -> str:
    return str(uuid.uuid4())


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=generate_message_id)

    # Rooms are not stored anywhere else; room_id is only a partition key
    room_id = Column(String(ROOM_ID_MAX_LENGTH), nullable=False)

    # Opaque to the server: base64 nonce||ciphertext, or a JSON media envelope
    content = Column(Text, nullable=False)

    # Locally generated per browser/client, not authenticated
    sender = Column(String(64), nullable=False, default="anonymous")

    # Client-side idempotency token for optimistic entries
    custom_id = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    deleted = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_messages_room_created", "room_id", "created_at"),
        Index("ix_messages_room_updated", "room_id", "updated_at"),
        Index("ix_messages_room_custom", "room_id", "custom_id"),
    )

    def __repr__(self) -> str:
        return f"<Message {self.id} in room {self.room_id}>"
