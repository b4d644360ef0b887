"""Database models and utilities."""

from .models import (
    NotificationTable,
    TicketNoteTable,
    TicketPhotoTable,
    TicketTable,
    TicketTimelineTable,
    UserTable,
)

__all__ = [
    "NotificationTable",
    "TicketNoteTable",
    "TicketPhotoTable",
    "TicketTable",
    "TicketTimelineTable",
    "UserTable",
]
