import os

# Must be set before cipherroom.infra.postgres builds its engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

from cipherroom.clients.session import RoomSession
from cipherroom.clients.transport import NO_RETRY, ChatTransport
from cipherroom.core.crypto import derive_room_key
from cipherroom.infra.postgres import SessionLocal, engine, init_db
from cipherroom.main import app
from cipherroom.models.base import Base

ROOM = "ABCD1234"


class AppSession:
    """requests.Session stand-in that routes ChatTransport calls into the app."""

    def __init__(self, client: TestClient):
        self.client = client
        self.calls = 0

    def post(self, url, json=None, timeout=None):
        self.calls += 1
        return self.client.post(url, json=json)

    def close(self):
        pass


@pytest.fixture(autouse=True)
def fresh_tables():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="session")
def room_key():
    # PBKDF2 is deliberately slow; derive once for the whole run
    return derive_room_key(ROOM)


@pytest.fixture
def make_session(room_key):
    def factory(sender_id: str, room_id: str = ROOM) -> RoomSession:
        key = room_key if room_id == ROOM else None
        return RoomSession(room_id, sender_id, key=key)
    return factory


@pytest.fixture
def make_transport(client):
    def factory() -> ChatTransport:
        return ChatTransport("http://testserver", session=AppSession(client), retry=NO_RETRY)
    return factory
