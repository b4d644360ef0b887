from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from repairshop.core.config import Settings, get_settings
from repairshop.notifications import NotificationService
from repairshop.storage import PhotoStorage
from repairshop.tickets.service import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_notification_service(request: Request) -> NotificationService:
    service = getattr(request.app.state, "notification_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Notification service is not configured")
    return service


async def get_photo_storage(request: Request) -> PhotoStorage:
    storage = getattr(request.app.state, "photo_storage", None)
    if storage is None:
        raise HTTPException(status_code=503, detail="Photo storage is not configured")
    return storage


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
PhotoStorageDep = Annotated[PhotoStorage, Depends(get_photo_storage)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
