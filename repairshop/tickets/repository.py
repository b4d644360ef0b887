from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Sequence

from sqlalchemy import delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from repairshop.db.models import (
    TicketNoteTable,
    TicketPhotoTable,
    TicketTable,
    TicketTimelineTable,
    UserTable,
)

from .errors import PhotoLimitExceededError, TicketValidationError
from .models import (
    Note,
    Photo,
    PhotoUpload,
    Requester,
    Role,
    Ticket,
    TicketAggregate,
    TicketFilters,
    TicketStats,
    TimelineEntry,
    TimelineOrder,
)
from .numbering import year_prefix
from .state import PhotoStage, TicketPriority, TicketStatus
from .timeline import TimelineLedger, append_entry, ensure_datetime, fetch_entries
from .visibility import normalize_phone

PHOTO_URL_PREFIX = "/uploads/tickets"


class TicketNumberTakenError(RuntimeError):
    """Raised when an insert collides with an existing ticket number."""


class TicketRepository:
    """Persistence helper wrapping tickets, their timeline, photos and notes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    def ledger(self, *, clock: Callable[[], datetime] | None = None) -> TimelineLedger:
        return TimelineLedger(self._session_factory, clock=clock)

    async def last_ticket_number(self, prefix: str, year: int) -> str | None:
        """Return the highest ticket number allocated for ``year``."""

        start = year_prefix(prefix, year)
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable.ticket_number)
                .where(TicketTable.ticket_number.startswith(start))
                .order_by(func.length(TicketTable.ticket_number).desc(), TicketTable.ticket_number.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def create_ticket(self, ticket: Ticket, *, created_by: str, note: str) -> TicketAggregate:
        """Insert ``ticket`` together with its first timeline entry.

        Raises :class:`TicketNumberTakenError` when another writer already
        claimed ``ticket.ticket_number``.
        """

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        TicketTable(
                            id=ticket.id,
                            ticket_number=ticket.ticket_number,
                            customer_id=ticket.customer_id,
                            customer_name=ticket.customer_name,
                            customer_email=ticket.customer_email,
                            customer_phone=ticket.customer_phone,
                            customer_phone_digits=normalize_phone(ticket.customer_phone),
                            device_type=ticket.device_type,
                            device_brand=ticket.device_brand,
                            device_model=ticket.device_model,
                            serial_number=ticket.serial_number,
                            issue_description=ticket.issue_description,
                            priority=ticket.priority.value,
                            status=ticket.status.value,
                            technician_id=ticket.technician_id,
                            created_at=ticket.created_at,
                            updated_at=ticket.updated_at,
                        )
                    )
                    await session.flush()
                    entry = await append_entry(
                        session,
                        ticket_id=ticket.id,
                        status=ticket.status,
                        description=note,
                        author_id=created_by,
                        created_at=ticket.created_at,
                    )
        except IntegrityError as exc:
            if not _is_number_collision(exc):
                raise TicketValidationError("Ticket references an unknown account") from exc
            raise TicketNumberTakenError(ticket.ticket_number) from exc
        return TicketAggregate(ticket=ticket, timeline=[entry])

    async def get_ticket(self, ticket_id: str, *, include_private_notes: bool = True) -> TicketAggregate | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            return await self._load_aggregate(session, row, include_private_notes=include_private_notes)

    async def get_ticket_by_number(self, ticket_number: str) -> TicketAggregate | None:
        async with self._session_factory() as session:
            result = await session.execute(select(TicketTable).where(TicketTable.ticket_number == ticket_number))
            row = result.scalars().first()
            if row is None:
                return None
            return await self._load_aggregate(session, row, include_private_notes=False)

    async def find_by_phone(self, phone_digits: str) -> list[TicketAggregate]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable)
                .where(TicketTable.customer_phone_digits.contains(phone_digits))
                .order_by(TicketTable.created_at.desc())
            )
            rows = result.scalars().all()
            return [await self._load_aggregate(session, row, include_private_notes=False) for row in rows]

    async def list_tickets(
        self, filters: TicketFilters, *, requester: Requester
    ) -> tuple[list[TicketAggregate], int]:
        conditions = self._scope_conditions(requester, assigned_only=filters.assigned_to_me)
        if filters.status is not None:
            conditions.append(TicketTable.status == filters.status.value)
        if filters.priority is not None:
            conditions.append(TicketTable.priority == filters.priority.value)
        if filters.search:
            pattern = f"%{filters.search}%"
            searchable = [
                TicketTable.ticket_number.ilike(pattern),
                TicketTable.customer_name.ilike(pattern),
                TicketTable.device_brand.ilike(pattern),
                TicketTable.device_model.ilike(pattern),
            ]
            if requester.is_staff:
                searchable.append(TicketTable.customer_email.ilike(pattern))
            conditions.append(or_(*searchable))

        offset = (filters.page - 1) * filters.limit
        async with self._session_factory() as session:
            count_result = await session.execute(
                select(func.count()).select_from(TicketTable).where(*conditions)
            )
            total = int(count_result.scalar_one())
            result = await session.execute(
                select(TicketTable)
                .where(*conditions)
                .order_by(TicketTable.created_at.desc())
                .offset(offset)
                .limit(filters.limit)
            )
            rows = result.scalars().all()
            names = await self._technician_names(session, rows)
            items = []
            for row in rows:
                latest = await fetch_entries(session, row.id, order=TimelineOrder.DESC, limit=1)
                ticket = self._table_to_ticket(row, technician_name=names.get(row.technician_id or ""))
                items.append(TicketAggregate(ticket=ticket, timeline=latest))
        return items, total

    async def ticket_stats(self, requester: Requester) -> TicketStats:
        conditions = self._scope_conditions(requester, assigned_only=requester.role is Role.TECHNICIAN)
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable.status, func.count()).where(*conditions).group_by(TicketTable.status)
            )
            by_status = {str(status): int(count) for status, count in result.all()}
        total = sum(by_status.values())
        completed = by_status.get(TicketStatus.COMPLETED.value, 0)
        cancelled = by_status.get(TicketStatus.CANCELLED.value, 0)
        return TicketStats(
            total=total,
            active=total - completed - cancelled,
            completed=completed,
            cancelled=cancelled,
            by_status=by_status,
        )

    async def update_status(
        self,
        ticket_id: str,
        *,
        status: TicketStatus,
        description: str,
        actor: str,
        now: datetime,
        changes: dict[str, Any],
    ) -> tuple[Ticket, TimelineEntry] | None:
        """Apply ``changes`` plus the new status and append one timeline entry."""

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id, with_for_update=True)
                if row is None:
                    return None
                row.status = status.value
                for name, value in changes.items():
                    setattr(row, name, value)
                row.updated_at = now
                entry = await append_entry(
                    session,
                    ticket_id=ticket_id,
                    status=status,
                    description=description,
                    author_id=actor,
                    created_at=now,
                )
                names = await self._technician_names(session, [row])
                ticket = self._table_to_ticket(row, technician_name=names.get(row.technician_id or ""))
        return ticket, entry

    async def set_technician(
        self,
        ticket_id: str,
        *,
        technician_id: str,
        technician_name: str,
        timeline_status: TicketStatus | None,
        description: str,
        actor: str,
        now: datetime,
    ) -> tuple[Ticket, TimelineEntry] | None:
        """Point the ticket at ``technician_id`` and record the change.

        ``timeline_status`` of ``None`` keeps the ticket's current status on
        the timeline entry.
        """

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id, with_for_update=True)
                if row is None:
                    return None
                row.technician_id = technician_id
                row.updated_at = now
                entry = await append_entry(
                    session,
                    ticket_id=ticket_id,
                    status=timeline_status or TicketStatus(row.status),
                    description=description,
                    author_id=actor,
                    created_at=now,
                )
                ticket = self._table_to_ticket(row, technician_name=technician_name)
        return ticket, entry

    async def add_photos(
        self,
        ticket_id: str,
        *,
        stage: PhotoStage,
        uploads: Sequence[PhotoUpload],
        per_stage_limit: int,
        description: str,
        actor: str,
        now: datetime,
    ) -> list[Photo] | None:
        """Insert photos for ``stage`` if the cap allows, in one transaction.

        The count is taken inside the insert transaction; a violation raises
        :class:`PhotoLimitExceededError` and leaves existing photos untouched.
        """

        async with self._session_factory() as session:
            async with session.begin():
                ticket_row = await session.get(TicketTable, ticket_id, with_for_update=True)
                if ticket_row is None:
                    return None
                count_result = await session.execute(
                    select(func.count())
                    .select_from(TicketPhotoTable)
                    .where(TicketPhotoTable.ticket_id == ticket_id, TicketPhotoTable.stage == stage.value)
                )
                existing = int(count_result.scalar_one())
                if existing + len(uploads) > per_stage_limit:
                    raise PhotoLimitExceededError(
                        f"Maximum {per_stage_limit} photos per stage. "
                        f"You have {existing} and trying to add {len(uploads)}."
                    )
                for upload in uploads:
                    session.add(
                        TicketPhotoTable(
                            id=str(uuid.uuid4()),
                            ticket_id=ticket_id,
                            stage=stage.value,
                            filename=upload.filename,
                            original_name=upload.original_name,
                            path=f"{PHOTO_URL_PREFIX}/{upload.filename}",
                            mime_type=upload.mime_type,
                            size=upload.size,
                            created_at=now,
                        )
                    )
                ticket_row.updated_at = now
                await session.flush()
                await append_entry(
                    session,
                    ticket_id=ticket_id,
                    status=stage.timeline_status,
                    description=description,
                    author_id=actor,
                    created_at=now,
                )
                photos = await self._fetch_photos(session, ticket_id)
        return photos

    async def count_photos(self, ticket_id: str, stage: PhotoStage) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(TicketPhotoTable)
                .where(TicketPhotoTable.ticket_id == ticket_id, TicketPhotoTable.stage == stage.value)
            )
            return int(result.scalar_one())

    async def add_note(
        self, ticket_id: str, *, content: str, is_private: bool, author: str, now: datetime
    ) -> Note | None:
        async with self._session_factory() as session:
            async with session.begin():
                ticket_row = await session.get(TicketTable, ticket_id)
                if ticket_row is None:
                    return None
                row = TicketNoteTable(
                    id=str(uuid.uuid4()),
                    ticket_id=ticket_id,
                    content=content,
                    is_private=is_private,
                    created_by=author,
                    created_at=now,
                )
                session.add(row)
                note = self._table_to_note(row)
        return note

    async def delete_ticket(self, ticket_id: str) -> list[Photo] | None:
        """Delete the ticket and everything it owns; return the removed photos."""

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    return None
                photos = await self._fetch_photos(session, ticket_id)
                # Explicit child deletes keep SQLite (no FK enforcement) consistent.
                for table in (TicketPhotoTable, TicketNoteTable, TicketTimelineTable):
                    await session.execute(delete(table).where(table.ticket_id == ticket_id))
                await session.execute(delete(TicketTable).where(TicketTable.id == ticket_id))
        return photos

    async def _load_aggregate(
        self, session: AsyncSession, row: TicketTable, *, include_private_notes: bool
    ) -> TicketAggregate:
        timeline = await fetch_entries(session, row.id, order=TimelineOrder.ASC)
        photos = await self._fetch_photos(session, row.id)
        note_statement = select(TicketNoteTable).where(TicketNoteTable.ticket_id == row.id)
        if not include_private_notes:
            note_statement = note_statement.where(TicketNoteTable.is_private.is_(False))
        note_result = await session.execute(note_statement.order_by(TicketNoteTable.created_at.asc()))
        notes = [self._table_to_note(note) for note in note_result.scalars().all()]
        names = await self._technician_names(session, [row])
        ticket = self._table_to_ticket(row, technician_name=names.get(row.technician_id or ""))
        return TicketAggregate(ticket=ticket, timeline=timeline, photos=photos, notes=notes)

    async def _fetch_photos(self, session: AsyncSession, ticket_id: str) -> list[Photo]:
        result = await session.execute(
            select(TicketPhotoTable)
            .where(TicketPhotoTable.ticket_id == ticket_id)
            .order_by(TicketPhotoTable.stage.asc(), TicketPhotoTable.created_at.asc())
        )
        return [self._table_to_photo(row) for row in result.scalars().all()]

    @staticmethod
    async def _technician_names(session: AsyncSession, rows: Sequence[TicketTable]) -> dict[str, str]:
        ids = {row.technician_id for row in rows if row.technician_id}
        if not ids:
            return {}
        result = await session.execute(select(UserTable).where(UserTable.id.in_(ids)))
        return {user.id: f"{user.first_name} {user.last_name}".strip() for user in result.scalars().all()}

    @staticmethod
    def _scope_conditions(requester: Requester, *, assigned_only: bool) -> list[Any]:
        if requester.role is Role.CUSTOMER:
            phone_digits = normalize_phone(requester.phone)
            if phone_digits:
                return [
                    or_(
                        TicketTable.customer_id == requester.id,
                        TicketTable.customer_phone_digits == phone_digits,
                    )
                ]
            return [TicketTable.customer_id == requester.id]
        if requester.role is Role.TECHNICIAN and assigned_only:
            return [TicketTable.technician_id == requester.id]
        return []

    @staticmethod
    def _table_to_ticket(row: TicketTable, *, technician_name: str | None = None) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_number=row.ticket_number,
            customer_id=row.customer_id,
            customer_name=row.customer_name,
            customer_email=row.customer_email,
            customer_phone=row.customer_phone,
            device_type=row.device_type,
            device_brand=row.device_brand,
            device_model=row.device_model,
            serial_number=row.serial_number,
            issue_description=row.issue_description,
            priority=TicketPriority(row.priority),
            status=TicketStatus(row.status),
            technician_id=row.technician_id,
            technician_name=technician_name,
            estimated_cost=row.estimated_cost,
            estimated_completion=_optional_datetime(row.estimated_completion),
            completed_at=_optional_datetime(row.completed_at),
            warranty_days=row.warranty_days,
            warranty_expires=_optional_datetime(row.warranty_expires),
            created_at=ensure_datetime(row.created_at),
            updated_at=ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _table_to_photo(row: TicketPhotoTable) -> Photo:
        return Photo(
            id=row.id,
            ticket_id=row.ticket_id,
            stage=PhotoStage(row.stage),
            filename=row.filename,
            original_name=row.original_name,
            path=row.path,
            mime_type=row.mime_type,
            size=row.size,
            created_at=ensure_datetime(row.created_at),
        )

    @staticmethod
    def _table_to_note(row: TicketNoteTable) -> Note:
        return Note(
            id=row.id,
            ticket_id=row.ticket_id,
            content=row.content,
            is_private=row.is_private,
            created_by=row.created_by,
            created_at=ensure_datetime(row.created_at),
        )


def _optional_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return ensure_datetime(value)


def _is_number_collision(exc: IntegrityError) -> bool:
    # SQLite reports "tickets.ticket_number", PostgreSQL "tickets_ticket_number_key".
    return "ticket_number" in str(exc.orig)
