from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence

from .state import PhotoStage, TicketPriority, TicketStatus


class Role(str, Enum):
    """Account roles known to the shop."""

    CUSTOMER = "CUSTOMER"
    TECHNICIAN = "TECHNICIAN"
    ADMIN = "ADMIN"

    @property
    def is_staff(self) -> bool:
        return self in (Role.TECHNICIAN, Role.ADMIN)


class TimelineOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(slots=True, frozen=True)
class Requester:
    """Authenticated identity on whose behalf an operation runs."""

    id: str
    role: Role
    phone: str | None = None
    display_name: str = ""

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff


@dataclass(slots=True)
class StaffMember:
    id: str
    role: Role
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(slots=True)
class Ticket:
    """Aggregate root representing one repair job."""

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
    created_at: datetime
    updated_at: datetime
    technician_name: str | None = None
    estimated_cost: float | None = None
    estimated_completion: datetime | None = None
    completed_at: datetime | None = None
    warranty_days: int | None = None
    warranty_expires: datetime | None = None


@dataclass(slots=True, frozen=True)
class TimelineEntry:
    """Immutable audit record of a status change or annotation."""

    id: str
    ticket_id: str
    sequence: int
    status: TicketStatus
    description: str
    created_by: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class Photo:
    id: str
    ticket_id: str
    stage: PhotoStage
    filename: str
    original_name: str
    path: str
    mime_type: str
    size: int
    created_at: datetime


@dataclass(slots=True, frozen=True)
class PhotoUpload:
    """Metadata of a photo already written to blob storage."""

    filename: str
    original_name: str
    mime_type: str
    size: int


@dataclass(slots=True, frozen=True)
class Note:
    id: str
    ticket_id: str
    content: str
    is_private: bool
    created_by: str
    created_at: datetime


@dataclass(slots=True)
class TicketDraft:
    """Fields supplied when a ticket is opened at the counter."""

    customer_name: str
    customer_email: str
    customer_phone: str
    device_type: str
    device_brand: str
    device_model: str
    issue_description: str
    priority: TicketPriority | str = TicketPriority.MEDIUM
    serial_number: str | None = None
    technician_id: str | None = None
    customer_id: str | None = None


@dataclass(slots=True)
class TicketAggregate:
    """Container bundling the ticket with its timeline, photos and notes."""

    ticket: Ticket
    timeline: Sequence[TimelineEntry] = field(default_factory=list)
    photos: Sequence[Photo] = field(default_factory=list)
    notes: Sequence[Note] = field(default_factory=list)


@dataclass(slots=True)
class TicketFilters:
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    search: str | None = None
    assigned_to_me: bool = False
    page: int = 1
    limit: int = 10


@dataclass(slots=True)
class TicketPage:
    """One page of ticket summaries; each carries only its newest entry."""

    items: Sequence[TicketAggregate]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


@dataclass(slots=True)
class TicketStats:
    total: int
    active: int
    completed: int
    cancelled: int
    by_status: dict[str, int]
