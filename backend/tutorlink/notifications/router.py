"""Notification centre endpoints.

Endpoints:
    GET /notifications: Caller's notifications, newest first (capped page)
    PUT /notifications/read-all: Mark every notification of the caller read
    PUT /notifications/{notification_id}/read: Mark one notification read

Marking is scoped to the caller; unknown or foreign ids succeed as no-ops.
"""
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from tutorlink.dependencies import get_current_user_id, get_notifications

from .service import NotificationSink

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    user_id: str = Depends(get_current_user_id),
    sink: NotificationSink = Depends(get_notifications),
) -> JSONResponse:
    notifications = sink.list_notifications(user_id, unread_only=unread_only)
    return JSONResponse([n.model_dump(mode="json") for n in notifications])


@router.put("/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    sink: NotificationSink = Depends(get_notifications),
) -> JSONResponse:
    count = sink.mark_all_read(user_id)
    logger.debug("[Notifications] %s marked %d read", user_id, count)
    return JSONResponse({"success": True, "marked": count})


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    sink: NotificationSink = Depends(get_notifications),
) -> JSONResponse:
    sink.mark_read(notification_id, user_id)
    return JSONResponse({"success": True})
