"""Field-level disclosure rules for ticket lookups.

Customer PII (name, email, phone) and photo sets are only disclosed to staff
and to the customer who owns the ticket. Ownership is established either by
account id or by a phone number that matches after stripping every
non-digit character. The HTTP layer performs its own role checks, but the
projection below is re-derived from the requester every time so a gap at
the boundary never leaks sensitive fields.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from .models import Photo, Requester, Role, Ticket, TicketAggregate, TimelineEntry
from .state import TicketPriority, TicketStatus

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str | None) -> str:
    """Strip everything except digits from ``phone``."""

    if not phone:
        return ""
    return _NON_DIGITS.sub("", phone)


def is_owner(ticket: Ticket, requester: Requester | None) -> bool:
    if requester is None or requester.role is not Role.CUSTOMER:
        return False
    if ticket.customer_id is not None and ticket.customer_id == requester.id:
        return True
    requester_phone = normalize_phone(requester.phone)
    return bool(requester_phone) and requester_phone == normalize_phone(ticket.customer_phone)


def can_view_sensitive(ticket: Ticket, requester: Requester | None) -> bool:
    if requester is None:
        return False
    if requester.role.is_staff:
        return True
    return is_owner(ticket, requester)


@dataclass(slots=True, frozen=True)
class PublicTimelineEntry:
    status: TicketStatus
    description: str
    created_at: datetime


@dataclass(slots=True)
class PublicTicketView:
    """Ticket representation safe to return to the given requester."""

    ticket_number: str
    status: TicketStatus
    device_type: str
    device_brand: str
    device_model: str
    issue_description: str
    priority: TicketPriority
    created_at: datetime
    technician_name: str | None
    timeline: Sequence[PublicTimelineEntry]
    can_view_sensitive_data: bool
    estimated_completion: datetime | None = None
    completed_at: datetime | None = None
    warranty_expires: datetime | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    photos: Sequence[Photo] | None = field(default=None)


def project(aggregate: TicketAggregate, requester: Requester | None) -> PublicTicketView:
    ticket = aggregate.ticket
    sensitive = can_view_sensitive(ticket, requester)
    view = PublicTicketView(
        ticket_number=ticket.ticket_number,
        status=ticket.status,
        device_type=ticket.device_type,
        device_brand=ticket.device_brand,
        device_model=ticket.device_model,
        issue_description=ticket.issue_description,
        priority=ticket.priority,
        created_at=ticket.created_at,
        technician_name=ticket.technician_name,
        timeline=[_public_entry(entry) for entry in aggregate.timeline],
        can_view_sensitive_data=sensitive,
        estimated_completion=ticket.estimated_completion,
        completed_at=ticket.completed_at,
        warranty_expires=ticket.warranty_expires,
    )
    if sensitive:
        view.customer_name = ticket.customer_name
        view.customer_email = ticket.customer_email
        view.customer_phone = ticket.customer_phone
        view.photos = list(aggregate.photos)
    return view


def _public_entry(entry: TimelineEntry) -> PublicTimelineEntry:
    return PublicTimelineEntry(status=entry.status, description=entry.description, created_at=entry.created_at)
