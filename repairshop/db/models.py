"""SQLModel table definitions for the repair shop data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class UserTable(SQLModel, table=True):
    """Shop accounts: customers, technicians and administrators."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    first_name: str = Field(sa_column=Column(String(100), nullable=False))
    last_name: str = Field(sa_column=Column(String(100), nullable=False))
    phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    role: str = Field(sa_column=Column(String(20), nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    access_token: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True, unique=True, index=True)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Repair jobs tracked from intake to completion."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    customer_id: str | None = Field(
        default=None,
        sa_column=Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True),
    )
    customer_name: str = Field(sa_column=Column(String(255), nullable=False))
    customer_email: str = Field(sa_column=Column(String(255), nullable=False))
    customer_phone: str = Field(sa_column=Column(String(50), nullable=False))
    customer_phone_digits: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    device_type: str = Field(sa_column=Column(String(100), nullable=False))
    device_brand: str = Field(sa_column=Column(String(100), nullable=False))
    device_model: str = Field(sa_column=Column(String(100), nullable=False))
    serial_number: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    issue_description: str = Field(sa_column=Column(Text, nullable=False))
    priority: str = Field(sa_column=Column(String(20), nullable=False))
    status: str = Field(sa_column=Column(String(30), nullable=False, index=True))
    technician_id: str | None = Field(
        default=None,
        sa_column=Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True),
    )
    estimated_cost: float | None = Field(default=None, sa_column=Column(Float, nullable=True))
    estimated_completion: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    warranty_days: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    warranty_expires: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTimelineTable(SQLModel, table=True):
    """Append-only status history of a ticket."""

    __tablename__ = "ticket_timeline"
    __table_args__ = (UniqueConstraint("ticket_id", "sequence", name="uq_ticket_timeline_sequence"),)

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    sequence: int = Field(sa_column=Column(Integer, nullable=False))
    status: str = Field(sa_column=Column(String(30), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    created_by: str = Field(sa_column=Column(String(36), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketPhotoTable(SQLModel, table=True):
    """Photos attached to a ticket, grouped by repair stage."""

    __tablename__ = "ticket_photos"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    stage: str = Field(sa_column=Column(String(20), nullable=False))
    filename: str = Field(sa_column=Column(String(255), nullable=False))
    original_name: str = Field(sa_column=Column(String(255), nullable=False))
    path: str = Field(sa_column=Column(String(512), nullable=False))
    mime_type: str = Field(sa_column=Column(String(100), nullable=False))
    size: int = Field(sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketNoteTable(SQLModel, table=True):
    """Staff notes on a ticket; private notes are hidden from customers."""

    __tablename__ = "ticket_notes"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    content: str = Field(sa_column=Column(Text, nullable=False))
    is_private: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_by: str = Field(sa_column=Column(String(36), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class NotificationTable(SQLModel, table=True):
    """Durable per-user notifications, independent of live delivery."""

    __tablename__ = "notifications"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    user_id: str = Field(
        sa_column=Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    type: str = Field(sa_column=Column(String(50), nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    is_read: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
