import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cipherroom.core.message import fetch_delta, soft_delete_messages, store_message
from cipherroom.core.message_logic import to_epoch_ms
from cipherroom.infra.postgres import get_db
from cipherroom.models.message import ROOM_ID_MAX_LENGTH

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_MESSAGE_LENGTH = 6 * 1024 * 1024
MAX_DELETE_IDS = 500
# Latest epoch ms a datetime can represent (9999-12-31T23:59:59.999Z)
MAX_WATERMARK = 253402300799999

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class SendSchema(BaseModel):
    roomId: str = Field(min_length=1, max_length=ROOM_ID_MAX_LENGTH)
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    messageId: str | None = Field(default=None, max_length=64)
    sender: str | None = Field(default=None, max_length=64)


class GetSchema(BaseModel):
    roomId: str = Field(min_length=1, max_length=ROOM_ID_MAX_LENGTH)
    lastUpdate: float = Field(default=0, ge=0, le=MAX_WATERMARK)


class DeleteSchema(BaseModel):
    roomId: str = Field(min_length=1, max_length=ROOM_ID_MAX_LENGTH)
    messageIds: list[str] = Field(max_length=MAX_DELETE_IDS)


async def read_json_body(request: Request) -> dict:
    """Parse the request body into a JSON object, rejecting anything else with 400."""
    body = await request.body()
    if not body.strip():
        raise HTTPException(status_code=400, detail="Request body is empty")

    try:
        data = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON format")

    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON format")
    return data


def handle_send(db: Session, payload: dict) -> dict:
    # Older clients posted the ciphertext as encryptedMsg
    if "message" not in payload and "encryptedMsg" in payload:
        payload = {**payload, "message": payload["encryptedMsg"]}

    request = SendSchema.model_validate(payload)
    message = store_message(
        db,
        room_id=request.roomId,
        content=request.message,
        sender=request.sender or "anonymous",
        custom_id=request.messageId,
    )
    logger.debug("Stored message %s in room %s", message.id, message.room_id)

    return {"id": message.id, "timestamp": to_epoch_ms(message.created_at)}


def handle_get(db: Session, payload: dict) -> dict:
    if payload.get("lastUpdate") is None:
        payload = {**payload, "lastUpdate": 0}

    request = GetSchema.model_validate(payload)
    messages, deletes = fetch_delta(db, request.roomId, request.lastUpdate)

    return {
        "messages": [
            {
                "id": m.id,
                "message": m.content,
                "sender": m.sender,
                "timestamp": to_epoch_ms(m.created_at),
            }
            for m in messages
        ],
        "deletes": [
            {"id": m.id, "updated_at": to_epoch_ms(m.updated_at)}
            for m in deletes
        ],
    }


def handle_delete(db: Session, payload: dict) -> dict:
    request = DeleteSchema.model_validate(payload)
    deleted = soft_delete_messages(db, request.roomId, request.messageIds)
    logger.info("Soft-deleted %d/%d messages in room %s",
                len(deleted), len(request.messageIds), request.roomId)

    return {"success": True, "deleted": deleted}


ACTIONS = {
    "send": handle_send,
    "get": handle_get,
    "delete": handle_delete,
}


@router.options("/chat")
def chat_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@router.post("/chat")
def chat(payload: dict = Depends(read_json_body), db: Session = Depends(get_db)):
    action = payload.get("action")
    room_id = payload.get("roomId")

    if not action or not room_id:
        raise HTTPException(status_code=400, detail="Missing required fields")

    handler = ACTIONS.get(action) if isinstance(action, str) else None
    if handler is None:
        raise HTTPException(status_code=400, detail=f"Invalid action: {action}")

    try:
        return handler(db, payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "body" for err in e.errors())
        raise HTTPException(status_code=400, detail=f"Invalid fields: {fields}")
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Database error during %s for room %s", action, room_id)
        raise HTTPException(status_code=500, detail=f"Database error: {e}")
