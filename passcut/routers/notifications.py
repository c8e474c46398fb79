"""
Notification Router - Pass-Cut Platform
passcut/routers/notifications.py

Rescore notifications for a candidate.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from passcut.core.dependencies import get_notification_service
from passcut.models.rescore import NotificationList
from passcut.services.notification_service import NotificationService

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


class MarkReadRequest(BaseModel):
    user_id: int = Field(..., ge=1)
    notification_ids: Optional[List[int]] = Field(default=None, description="All unread when omitted")


class MarkReadResponse(BaseModel):
    success: bool = True
    updated_count: int


@router.get(
    "/notifications/rescore",
    response_model=NotificationList,
    summary="Unread rescore notifications",
)
def list_rescore_notifications(
    user_id: int = Query(..., ge=1),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationList:
    return service.list_notifications(user_id)


@router.post(
    "/notifications/rescore/read",
    response_model=MarkReadResponse,
    summary="Mark rescore notifications read",
)
def mark_rescore_notifications_read(
    request: MarkReadRequest,
    service: NotificationService = Depends(get_notification_service),
) -> MarkReadResponse:
    return MarkReadResponse(updated_count=service.mark_read(request.user_id, request.notification_ids))
