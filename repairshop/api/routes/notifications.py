from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from repairshop.dependencies.auth import CurrentRequester
from repairshop.dependencies.services import NotificationServiceDep
from repairshop.notifications import NotificationNotFoundError

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    page: int
    limit: int
    total: int
    pages: int


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    updated: int


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    service: NotificationServiceDep,
    requester: CurrentRequester,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False, alias="unreadOnly"),
) -> NotificationListResponse:
    result = await service.list_for(requester.id, page=page, limit=limit, unread_only=unread_only)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(item) for item in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        pages=result.pages,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(service: NotificationServiceDep, requester: CurrentRequester) -> UnreadCountResponse:
    return UnreadCountResponse(count=await service.unread_count(requester.id))


@router.patch("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(service: NotificationServiceDep, requester: CurrentRequester) -> MarkAllReadResponse:
    return MarkAllReadResponse(updated=await service.mark_all_read(requester.id))


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str, service: NotificationServiceDep, requester: CurrentRequester
) -> NotificationResponse:
    try:
        notification = await service.mark_read(notification_id, requester.id)
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str, service: NotificationServiceDep, requester: CurrentRequester
) -> None:
    try:
        await service.delete(notification_id, requester.id)
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
