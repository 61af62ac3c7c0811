# cipherroom/clients/transport.py

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable

import requests

logger = logging.getLogger(__name__)

# =========================
# CONFIGURATION
# =========================

SERVER_URL = os.getenv("CIPHERROOM_SERVER_URL", "http://127.0.0.1:8000")
CHAT_PATH = "/api/chat"
REQUEST_TIMEOUT = 10  # seconds


class TransportError(Exception):
    """A chat request failed at the HTTP or network level."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        # Network failures and server-side errors; 4xx means the request itself is bad
        return self.status_code is None or self.status_code >= 500


@dataclass
class RetryPolicy:
    """How many times a request is attempted and how long to wait in between."""

    max_attempts: int = 3
    backoff: tuple = (0.5, 1.0, 2.0)  # seconds; the last value repeats
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay(self, attempt: int) -> float:
        if not self.backoff:
            return 0.0
        return self.backoff[min(attempt - 1, len(self.backoff) - 1)]


NO_RETRY = RetryPolicy(max_attempts=1)


@dataclass
class SendReceipt:
    id: str
    timestamp: int


@dataclass
class IncomingMessage:
    id: str
    message: str
    sender: str
    timestamp: int


@dataclass
class DeleteNotice:
    id: str
    updated_at: int


@dataclass
class Delta:
    messages: list = field(default_factory=list)
    deletes: list = field(default_factory=list)


class ChatTransport:
    """
    Client for the single chat endpoint.

    Every call posts {action, roomId, ...} as JSON and goes through the same
    retry policy. Failures are raised as TransportError.
    """

    def __init__(self, base_url: str = SERVER_URL, session=None,
                 retry: RetryPolicy | None = None, timeout: float = REQUEST_TIMEOUT):
        self.endpoint = base_url.rstrip("/") + CHAT_PATH
        self.session = session or requests.Session()
        self.retry = retry or RetryPolicy()
        self.timeout = timeout

    def send(self, room_id: str, message: str, message_id: str | None = None,
             sender: str | None = None) -> SendReceipt:
        body = self._post({
            "action": "send",
            "roomId": room_id,
            "message": message,
            "messageId": message_id,
            "sender": sender,
        })
        try:
            return SendReceipt(id=str(body["id"]), timestamp=int(body["timestamp"]))
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Invalid send response: {e}") from e

    def get_delta(self, room_id: str, last_update: int = 0) -> Delta:
        body = self._post({"action": "get", "roomId": room_id, "lastUpdate": last_update})

        messages = body.get("messages")
        deletes = body.get("deletes", [])
        if not isinstance(messages, list) or not isinstance(deletes, list):
            raise TransportError("Invalid response format")

        try:
            return Delta(
                messages=[
                    IncomingMessage(
                        id=str(m["id"]),
                        message=m["message"],
                        sender=m.get("sender") or "",
                        timestamp=int(m["timestamp"]),
                    )
                    for m in messages
                    if m.get("id") and _has_payload(m)
                ],
                deletes=[
                    DeleteNotice(id=str(d["id"]), updated_at=int(d["updated_at"]))
                    for d in deletes
                    if d.get("id")
                ],
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransportError(f"Invalid response format: {e}") from e

    def delete(self, room_id: str, message_ids: list) -> list:
        body = self._post({"action": "delete", "roomId": room_id, "messageIds": list(message_ids)})
        return list(body.get("deleted", []))

    def close(self):
        self.session.close()

    # -------------------------

    def _post(self, payload: dict) -> dict:
        attempt = 1
        while True:
            try:
                return self._post_once(payload)
            except TransportError as e:
                if not e.retryable or attempt >= self.retry.max_attempts:
                    raise
                delay = self.retry.delay(attempt)
                logger.warning("%s request failed (%s), retry %d/%d in %.1fs",
                               payload["action"], e, attempt, self.retry.max_attempts - 1, delay)
                self.retry.sleep(delay)
                attempt += 1

    def _post_once(self, payload: dict) -> dict:
        try:
            resp = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Network error: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise TransportError(f"HTTP {resp.status_code}: {_error_text(resp)}", resp.status_code)

        try:
            body = resp.json()
        except ValueError as e:
            raise TransportError("Response is not JSON", resp.status_code) from e

        if not isinstance(body, dict):
            raise TransportError("Invalid response format", resp.status_code)
        return body


def _error_text(resp) -> str:
    try:
        return resp.json().get("error") or resp.text
    except (ValueError, AttributeError):
        return resp.text


def _has_payload(item: dict) -> bool:
    if isinstance(item.get("message"), str):
        return True
    logger.warning("Skipping message %s without a ciphertext payload", item.get("id"))
    return False
