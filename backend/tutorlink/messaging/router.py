"""Conversation and message HTTP endpoints.

Endpoints:
    GET  /conversations                          - Caller's conversations
    POST /conversations                          - Start (or reuse) a direct conversation
    POST /conversations/messages                 - Send to a recipient, creating the thread if needed
    GET  /conversations/{conversation_id}/messages  - History (marks it read)
    POST /conversations/{conversation_id}/messages  - Send to an existing conversation
    PUT  /conversations/{conversation_id}/read      - Mark read without fetching
    POST /conversations/{conversation_id}/members   - Add a member

Every endpoint requires a bearer token. Non-members get a generic 403, also
for conversation ids that do not exist.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tutorlink.dependencies import get_current_user_id, get_messaging
from tutorlink.errors import ValidationError

from .schemas import AddMemberRequest, CreateConversationRequest, SendMessageRequest
from .service import MessagingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["messaging"])


@router.get("")
async def list_conversations(
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging),
) -> JSONResponse:
    """List the caller's conversations, most recently active first."""
    conversations = messaging.list_conversations(user_id)
    return JSONResponse([c.model_dump(mode="json") for c in conversations])


@router.post("")
async def create_conversation(
    body: CreateConversationRequest,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging),
) -> JSONResponse:
    """Start a direct conversation.

    Returns:
        ``{"conversationId": ...}`` with 201 when created, 200 when an
        existing conversation between the two users was reused.
    """
    conversation_id, created = await messaging.create_conversation(
        user_id, body.recipientId, body.title
    )
    return JSONResponse(
        {"conversationId": conversation_id},
        status_code=201 if created else 200,
    )


async def _send(
    messaging: MessagingService,
    user_id: str,
    request: SendMessageRequest,
    conversation_id: Optional[str] = None,
) -> JSONResponse:
    result = await messaging.send_message(
        user_id,
        request.body,
        conversation_id=conversation_id,
        recipient_id=None if conversation_id else request.recipientId,
    )
    data = result.message.model_dump(mode="json")
    data["conversationId"] = result.conversationId
    return JSONResponse(data, status_code=201)


@router.post("/messages", status_code=201)
async def send_to_recipient(
    request: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging),
) -> JSONResponse:
    """Send a message without a conversation id.

    The direct conversation with ``recipientId`` is reused or created; the
    response's ``conversationId`` tells the client where it went.
    """
    if not request.recipientId:
        # Body is checked first so the error matches the socket path.
        if not request.body.strip():
            raise ValidationError("Message body is required")
        raise ValidationError("Conversation ID or recipient ID is required")
    return await _send(messaging, user_id, request)


@router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging),
) -> JSONResponse:
    """Full history, oldest first. Marks messages from others as read."""
    messages = await messaging.get_messages(user_id, conversation_id)
    return JSONResponse([m.model_dump(mode="json") for m in messages])


@router.post("/{conversation_id}/messages", status_code=201)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging),
) -> JSONResponse:
    """Send a message to an existing conversation."""
    return await _send(messaging, user_id, request, conversation_id)


@router.put("/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging),
) -> JSONResponse:
    changed = await messaging.mark_conversation_read(user_id, conversation_id)
    return JSONResponse({"conversationId": conversation_id, "marked": changed})


@router.post("/{conversation_id}/members")
async def add_member(
    conversation_id: str,
    request: AddMemberRequest,
    user_id: str = Depends(get_current_user_id),
    messaging: MessagingService = Depends(get_messaging),
) -> JSONResponse:
    """Add a user to a conversation the caller belongs to."""
    added = await messaging.add_member(user_id, conversation_id, request.userId)
    logger.info("[messaging] %s added %s to %s (new=%s)", user_id, request.userId, conversation_id, added)
    return JSONResponse(
        {"conversationId": conversation_id, "userId": request.userId, "added": added},
        status_code=201 if added else 200,
    )
