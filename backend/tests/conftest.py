"""Shared test fixtures and configuration for backend tests."""
from typing import Any, List, Tuple

import jwt
import pytest
from fastapi.testclient import TestClient

from tutorlink.chat.events import EventDispatcher
from tutorlink.chat.presence import PresenceRegistry
from tutorlink.chat.rooms import RoomRouter
from tutorlink.config import AppSettings, DatabaseSettings, JWTSecrets, Secrets
from tutorlink.main import create_app
from tutorlink.messaging.lifecycle import ConversationLifecycle
from tutorlink.messaging.schemas import UserProfile, UserRole
from tutorlink.messaging.service import MessagingService
from tutorlink.messaging.store import ConversationStore
from tutorlink.notifications.service import NotificationSink

TEST_SECRET = "test-secret-key"

PROFILES = [
    UserProfile(id="alice", firstName="Alice", lastName="Ng", role=UserRole.STUDENT),
    UserProfile(id="bob", firstName="Bob", lastName="Okafor", avatar="https://cdn.example/bob.png", role=UserRole.TUTOR),
    UserProfile(id="carol", firstName="Carol", lastName="Diaz", role=UserRole.TUTOR),
]


def make_token(user_id: str, secret: str = TEST_SECRET, **claims: Any) -> str:
    """Sign a token the way the account service does."""
    payload = {"userId": user_id}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class FakeConnection:
    """Stand-in for ``tutorlink.chat.connection.Connection``.

    Records every frame instead of writing to a socket. ``fail`` makes every
    send report failure, like a dead socket.
    """

    def __init__(self, connection_id: str, user_id: str, fail: bool = False) -> None:
        self.id = connection_id
        self.user_id = user_id
        self.fail = fail
        self.sent: List[Tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> bool:
        if self.fail:
            return False
        self.sent.append((event, data))
        return True

    def events(self, name: str) -> List[Any]:
        return [data for event, data in self.sent if event == name]


@pytest.fixture
def config():
    """Settings with in-memory databases and a known signing key."""
    return AppSettings(
        database=DatabaseSettings(messaging_path=":memory:", notifications_path=":memory:"),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    )


@pytest.fixture
def store():
    store = ConversationStore(db_path=":memory:")
    for profile in PROFILES:
        store.upsert_user(profile)
    yield store
    store.close()


@pytest.fixture
def sink():
    sink = NotificationSink(db_path=":memory:")
    yield sink
    sink.close()


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
def router(presence):
    return RoomRouter(presence)


@pytest.fixture
def messaging(store, sink, presence, router):
    """MessagingService over real in-memory stores and a fake-connection router."""
    dispatcher = EventDispatcher(router)
    lifecycle = ConversationLifecycle(store, sink, dispatcher)
    return MessagingService(store, sink, presence, dispatcher, lifecycle)


def connect(router: RoomRouter, connection: FakeConnection) -> FakeConnection:
    """Register a fake connection with the router and its presence registry."""
    router.register(connection)
    router.presence.add_connection(connection.user_id, connection.id)
    return connection


@pytest.fixture
def api_client(config):
    """Provide a TestClient with started services and seeded user profiles."""
    app = create_app(config)
    with TestClient(app) as client:
        for profile in PROFILES:
            app.state.services.store.upsert_user(profile)
        yield client


@pytest.fixture
def services(api_client):
    return api_client.app.state.services
