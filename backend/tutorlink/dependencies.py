"""Service container and FastAPI dependencies.

All stateful components are built once per application by
``build_services`` and hung off ``app.state.services``. Nothing is kept in
module-level globals, so tests can build isolated containers (in-memory
databases, fresh presence registry) per test.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from tutorlink.auth.service import TokenVerifier, extract_bearer
from tutorlink.chat.events import EventDispatcher
from tutorlink.chat.presence import PresenceRegistry
from tutorlink.chat.rooms import RoomRouter, TypingTracker
from tutorlink.config import AppSettings
from tutorlink.errors import AuthenticationError
from tutorlink.messaging.lifecycle import ConversationLifecycle
from tutorlink.messaging.service import MessagingService
from tutorlink.messaging.store import ConversationStore
from tutorlink.notifications.service import NotificationSink

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppSettings
    verifier: TokenVerifier
    store: ConversationStore
    notifications: NotificationSink
    presence: PresenceRegistry
    rooms: RoomRouter
    typing: TypingTracker
    dispatcher: EventDispatcher
    lifecycle: ConversationLifecycle
    messaging: MessagingService

    def close(self) -> None:
        self.store.close()
        self.notifications.close()


def build_services(config: AppSettings) -> Services:
    """Wire every component from configuration."""
    verifier = TokenVerifier(
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.auth.algorithm,
        user_claim=config.auth.user_claim,
    )
    store = ConversationStore(db_path=config.database.messaging_path)
    notifications = NotificationSink(
        db_path=config.database.notifications_path,
        page_size=config.messaging.notification_page_size,
    )
    presence = PresenceRegistry()
    rooms = RoomRouter(presence)
    dispatcher = EventDispatcher(rooms)
    lifecycle = ConversationLifecycle(store, notifications, dispatcher)
    messaging = MessagingService(
        store=store,
        notifications=notifications,
        presence=presence,
        dispatcher=dispatcher,
        lifecycle=lifecycle,
        excerpt_length=config.messaging.excerpt_length,
        max_body_length=config.messaging.max_body_length,
    )
    return Services(
        config=config,
        verifier=verifier,
        store=store,
        notifications=notifications,
        presence=presence,
        rooms=rooms,
        typing=TypingTracker(),
        dispatcher=dispatcher,
        lifecycle=lifecycle,
        messaging=messaging,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user_id(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> str:
    """Resolve the caller from the ``Authorization: Bearer`` header.

    The caller's directory row is refreshed from the token claims.

    Raises:
        AuthenticationError: Rendered as 401 by the exception handlers.
    """
    token = extract_bearer(authorization)
    if token is None:
        raise AuthenticationError("Authentication token is required")
    services = get_services(request)
    user_id, claims = services.verifier.verify_claims(token)
    services.store.record_identity(user_id, claims)
    return user_id


def get_messaging(services: Services = Depends(get_services)) -> MessagingService:
    return services.messaging


def get_notifications(services: Services = Depends(get_services)) -> NotificationSink:
    return services.notifications
