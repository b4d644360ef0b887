from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field

from repairshop.dependencies.auth import AdminRequester, CurrentRequester, OptionalRequester, StaffRequester
from repairshop.dependencies.services import PhotoStorageDep, SettingsDep, TicketServiceDep
from repairshop.tickets.errors import (
    ForbiddenError,
    TicketNotFoundError,
    TicketNumberConflictError,
    TicketServiceError,
    TicketValidationError,
)
from repairshop.tickets.models import (
    PhotoUpload,
    TicketAggregate,
    TicketDraft,
    TicketFilters,
    TimelineOrder,
)
from repairshop.tickets.state import PhotoStage, TicketPriority, TicketStateMachine, TicketStatus
from repairshop.tickets.visibility import PublicTicketView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_email: str = Field(..., min_length=3, max_length=255)
    customer_phone: str = Field(..., min_length=1, max_length=50)
    device_type: str = Field(..., min_length=1, max_length=100)
    device_brand: str = Field(..., min_length=1, max_length=100)
    device_model: str = Field(..., min_length=1, max_length=100)
    serial_number: str | None = Field(default=None, max_length=100)
    issue_description: str = Field(..., min_length=1)
    priority: TicketPriority = TicketPriority.MEDIUM
    technician_id: str | None = None
    customer_id: str | None = None


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus
    description: str | None = Field(default=None, max_length=500)
    warranty_days: int | None = Field(default=None, ge=0)
    estimated_cost: float | None = Field(default=None, ge=0)
    estimated_completion: datetime | None = None


class TicketAssignRequest(BaseModel):
    technician_id: str = Field(..., min_length=1)


class TicketTransferRequest(BaseModel):
    technician_id: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=500)


class NoteCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    is_private: bool = True


class TimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: TicketStatus
    description: str
    created_by: str
    created_at: datetime


class PhotoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    stage: PhotoStage
    filename: str
    original_name: str
    path: str
    mime_type: str
    size: int
    created_at: datetime


class NoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    content: str
    is_private: bool
    created_by: str
    created_at: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_number: str
    customer_id: str | None
    customer_name: str
    customer_email: str
    customer_phone: str
    device_type: str
    device_brand: str
    device_model: str
    serial_number: str | None
    issue_description: str
    priority: TicketPriority
    status: TicketStatus
    technician_id: str | None
    technician_name: str | None
    estimated_cost: float | None
    estimated_completion: datetime | None
    completed_at: datetime | None
    warranty_days: int | None
    warranty_expires: datetime | None
    created_at: datetime
    updated_at: datetime


class TicketDetailResponse(TicketResponse):
    suggested_statuses: list[TicketStatus] = Field(default_factory=list)
    timeline: list[TimelineEntryResponse] = Field(default_factory=list)
    photos: list[PhotoResponse] = Field(default_factory=list)
    notes: list[NoteResponse] = Field(default_factory=list)


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TicketListResponse(BaseModel):
    tickets: list[TicketDetailResponse]
    pagination: PaginationResponse


class TicketStatsResponse(BaseModel):
    total: int
    active: int
    completed: int
    cancelled: int
    by_status: dict[str, int]


class PublicTimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: TicketStatus
    description: str
    created_at: datetime


class PublicTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_number: str
    status: TicketStatus
    device_type: str
    device_brand: str
    device_model: str
    issue_description: str
    priority: TicketPriority
    created_at: datetime
    technician_name: str | None
    timeline: list[PublicTimelineEntryResponse]
    can_view_sensitive_data: bool
    estimated_completion: datetime | None = None
    completed_at: datetime | None = None
    warranty_expires: datetime | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    photos: list[PhotoResponse] | None = None


def _http_error(exc: TicketServiceError) -> HTTPException:
    if isinstance(exc, TicketNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, TicketNumberConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TicketValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail="Ticket operation failed")


def _to_detail(aggregate: TicketAggregate) -> TicketDetailResponse:
    ticket = TicketResponse.model_validate(aggregate.ticket)
    return TicketDetailResponse(
        **ticket.model_dump(),
        suggested_statuses=list(TicketStateMachine.conventional_next(aggregate.ticket.status)),
        timeline=[TimelineEntryResponse.model_validate(entry) for entry in aggregate.timeline],
        photos=[PhotoResponse.model_validate(photo) for photo in aggregate.photos],
        notes=[NoteResponse.model_validate(note) for note in aggregate.notes],
    )


def _to_public(view: PublicTicketView) -> PublicTicketResponse:
    return PublicTicketResponse.model_validate(view)


@router.get("/track/{ticket_number}", response_model=PublicTicketResponse, summary="Track a ticket by number")
async def track_ticket(
    ticket_number: str, service: TicketServiceDep, requester: OptionalRequester
) -> PublicTicketResponse:
    try:
        view = await service.track_by_number(ticket_number, requester)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return _to_public(view)


@router.get("/search/phone/{phone}", response_model=list[PublicTicketResponse], summary="Find tickets by phone")
async def search_by_phone(
    phone: str, service: TicketServiceDep, requester: OptionalRequester
) -> list[PublicTicketResponse]:
    try:
        views = await service.search_by_phone(phone, requester)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return [_to_public(view) for view in views]


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    service: TicketServiceDep,
    requester: CurrentRequester,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    priority: TicketPriority | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    assigned_to_me: bool = Query(default=False, alias="assignedToMe"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> TicketListResponse:
    filters = TicketFilters(
        status=status_filter,
        priority=priority,
        search=search,
        assigned_to_me=assigned_to_me,
        page=page,
        limit=limit,
    )
    try:
        result = await service.list_tickets(requester, filters)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketListResponse(
        tickets=[_to_detail(item) for item in result.items],
        pagination=PaginationResponse(page=result.page, limit=result.limit, total=result.total, pages=result.pages),
    )


@router.get("/stats", response_model=TicketStatsResponse)
async def ticket_stats(service: TicketServiceDep, requester: CurrentRequester) -> TicketStatsResponse:
    stats = await service.ticket_stats(requester)
    return TicketStatsResponse(
        total=stats.total,
        active=stats.active,
        completed=stats.completed,
        cancelled=stats.cancelled,
        by_status=dict(stats.by_status),
    )


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, requester: CurrentRequester) -> TicketDetailResponse:
    try:
        aggregate = await service.get_ticket(ticket_id, requester=requester)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return _to_detail(aggregate)


@router.get("/{ticket_id}/timeline", response_model=list[TimelineEntryResponse])
async def get_ticket_timeline(
    ticket_id: str,
    service: TicketServiceDep,
    requester: CurrentRequester,
    order: TimelineOrder = Query(default=TimelineOrder.ASC),
    limit: int | None = Query(default=None, ge=1, le=500),
) -> list[TimelineEntryResponse]:
    try:
        if not requester.is_staff:
            # ownership check for customers
            await service.get_ticket(ticket_id, requester=requester)
        entries = await service.list_timeline(ticket_id, order, limit=limit)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return [TimelineEntryResponse.model_validate(entry) for entry in entries]


@router.post("", response_model=TicketDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    requester: CurrentRequester,
) -> TicketDetailResponse:
    draft = TicketDraft(**payload.model_dump())
    try:
        aggregate = await service.create_ticket(draft, actor=requester)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return _to_detail(aggregate)


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    requester: StaffRequester,
) -> TicketResponse:
    try:
        ticket = await service.update_status(
            ticket_id,
            payload.status,
            actor=requester,
            description=payload.description,
            warranty_days=payload.warranty_days,
            estimated_cost=payload.estimated_cost,
            estimated_completion=payload.estimated_completion,
        )
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketResponse.model_validate(ticket)


@router.patch("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_technician(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    requester: StaffRequester,
) -> TicketResponse:
    try:
        ticket = await service.assign_technician(ticket_id, payload.technician_id, actor=requester)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketResponse.model_validate(ticket)


@router.patch("/{ticket_id}/transfer", response_model=TicketResponse)
async def transfer_technician(
    ticket_id: str,
    payload: TicketTransferRequest,
    service: TicketServiceDep,
    requester: StaffRequester,
) -> TicketResponse:
    try:
        ticket = await service.transfer_technician(
            ticket_id, payload.technician_id, actor=requester, reason=payload.reason
        )
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketResponse.model_validate(ticket)


@router.post("/{ticket_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def add_note(
    ticket_id: str,
    payload: NoteCreateRequest,
    service: TicketServiceDep,
    requester: StaffRequester,
) -> NoteResponse:
    try:
        note = await service.add_note(ticket_id, payload.content, actor=requester, is_private=payload.is_private)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return NoteResponse.model_validate(note)


@router.post("/{ticket_id}/photos", response_model=list[PhotoResponse], status_code=status.HTTP_201_CREATED)
async def upload_photos(
    ticket_id: str,
    service: TicketServiceDep,
    storage: PhotoStorageDep,
    settings: SettingsDep,
    requester: StaffRequester,
    stage: str = Form(...),
    photos: list[UploadFile] = File(...),
) -> list[PhotoResponse]:
    contents: list[tuple[UploadFile, bytes]] = []
    for upload in photos:
        if upload.content_type not in settings.allowed_photo_types:
            raise HTTPException(status_code=400, detail="Only image files are allowed (jpeg, jpg, png, gif, webp)")
        data = await upload.read()
        if len(data) > settings.max_upload_size:
            raise HTTPException(status_code=400, detail=f"File {upload.filename} is too large")
        contents.append((upload, data))

    # Disk writes run off the event loop; anything stored is removed if the insert fails.
    saved: list[PhotoUpload] = []
    try:
        for upload, data in contents:
            saved.append(
                await asyncio.to_thread(
                    storage.save, data, original_name=upload.filename or "", mime_type=upload.content_type or ""
                )
            )
        stored = await service.add_photos(ticket_id, stage, saved, actor=requester)
    except TicketServiceError as exc:
        await asyncio.to_thread(storage.remove, [item.filename for item in saved])
        raise _http_error(exc) from exc
    except Exception:
        await asyncio.to_thread(storage.remove, [item.filename for item in saved])
        raise
    return [PhotoResponse.model_validate(photo) for photo in stored]


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, service: TicketServiceDep, requester: AdminRequester) -> None:
    try:
        await service.delete_ticket(ticket_id)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    logger.info("Ticket %s deleted by %s", ticket_id, requester.id)
