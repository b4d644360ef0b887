"""Append-only timeline of ticket status changes and annotations."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from repairshop.db.models import TicketTable, TicketTimelineTable

from .errors import TicketNotFoundError
from .models import TimelineEntry, TimelineOrder
from .state import TicketStatus


def ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def row_to_entry(row: TicketTimelineTable) -> TimelineEntry:
    return TimelineEntry(
        id=row.id,
        ticket_id=row.ticket_id,
        sequence=row.sequence,
        status=TicketStatus(row.status),
        description=row.description,
        created_by=row.created_by,
        created_at=ensure_datetime(row.created_at),
    )


async def append_entry(
    session: AsyncSession,
    *,
    ticket_id: str,
    status: TicketStatus,
    description: str,
    author_id: str,
    created_at: datetime,
) -> TimelineEntry:
    """Add one entry inside the caller's transaction.

    Callers lock the ticket row first so concurrent appends serialize on
    it; the unique ``(ticket_id, sequence)`` constraint backs that up.
    """

    result = await session.execute(
        select(func.max(TicketTimelineTable.sequence)).where(TicketTimelineTable.ticket_id == ticket_id)
    )
    last_sequence = result.scalar_one_or_none() or 0
    row = TicketTimelineTable(
        id=str(uuid.uuid4()),
        ticket_id=ticket_id,
        sequence=last_sequence + 1,
        status=status.value,
        description=description,
        created_by=author_id,
        created_at=created_at,
    )
    session.add(row)
    await session.flush()
    return row_to_entry(row)


async def fetch_entries(
    session: AsyncSession,
    ticket_id: str,
    *,
    order: TimelineOrder = TimelineOrder.ASC,
    limit: int | None = None,
) -> list[TimelineEntry]:
    statement = select(TicketTimelineTable).where(TicketTimelineTable.ticket_id == ticket_id)
    if order is TimelineOrder.DESC:
        statement = statement.order_by(TicketTimelineTable.created_at.desc(), TicketTimelineTable.sequence.desc())
    else:
        statement = statement.order_by(TicketTimelineTable.created_at.asc(), TicketTimelineTable.sequence.asc())
    if limit is not None:
        statement = statement.limit(limit)
    result = await session.execute(statement)
    return [row_to_entry(row) for row in result.scalars().all()]


class TimelineLedger:
    """Durable record of every transition and manual annotation on a ticket."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def append(
        self,
        ticket_id: str,
        status: TicketStatus,
        description: str,
        author_id: str,
    ) -> TimelineEntry:
        async with self._session_factory() as session:
            async with session.begin():
                ticket_row = await session.get(TicketTable, ticket_id, with_for_update=True)
                if ticket_row is None:
                    raise TicketNotFoundError(f"Ticket {ticket_id} not found")
                now = self._clock()
                entry = await append_entry(
                    session,
                    ticket_id=ticket_id,
                    status=status,
                    description=description,
                    author_id=author_id,
                    created_at=now,
                )
                ticket_row.updated_at = now
        return entry

    async def list_for(
        self,
        ticket_id: str,
        order: TimelineOrder = TimelineOrder.ASC,
        *,
        limit: int | None = None,
    ) -> list[TimelineEntry]:
        async with self._session_factory() as session:
            ticket_row = await session.get(TicketTable, ticket_id)
            if ticket_row is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            return await fetch_entries(session, ticket_id, order=order, limit=limit)
