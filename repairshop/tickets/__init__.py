"""Repair ticket lifecycle: state machine, timeline, visibility and services."""

from .errors import (
    ForbiddenError,
    InvalidAssigneeError,
    InvalidStageError,
    PhotoLimitExceededError,
    TicketNotFoundError,
    TicketNumberConflictError,
    TicketServiceError,
    TicketValidationError,
)
from .models import Requester, Role, Ticket, TicketAggregate, TicketDraft, TimelineEntry, TimelineOrder
from .service import TicketService
from .state import PhotoStage, TicketPriority, TicketStateMachine, TicketStatus
from .timeline import TimelineLedger
from .visibility import PublicTicketView, can_view_sensitive, normalize_phone, project

__all__ = [
    "ForbiddenError",
    "InvalidAssigneeError",
    "InvalidStageError",
    "PhotoLimitExceededError",
    "PhotoStage",
    "PublicTicketView",
    "Requester",
    "Role",
    "Ticket",
    "TicketAggregate",
    "TicketDraft",
    "TicketNotFoundError",
    "TicketNumberConflictError",
    "TicketPriority",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketValidationError",
    "TimelineEntry",
    "TimelineLedger",
    "TimelineOrder",
    "can_view_sensitive",
    "normalize_phone",
    "project",
]
