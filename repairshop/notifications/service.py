from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from repairshop.db.models import NotificationTable
from repairshop.realtime import Event, EventType, SubscriptionRegistry, user_channel
from repairshop.tickets.errors import TicketNotFoundError
from repairshop.tickets.timeline import ensure_datetime

logger = logging.getLogger(__name__)


class NotificationNotFoundError(TicketNotFoundError):
    """Raised when a notification does not exist for the given user."""


@dataclass(slots=True)
class Notification:
    id: str
    user_id: str
    type: str
    title: str
    message: str
    metadata: Mapping[str, Any]
    is_read: bool
    created_at: datetime


@dataclass(slots=True)
class NotificationPage:
    items: Sequence[Notification]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


class NotificationRepository:
    """Persistence for the per-user notification inbox."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, notification: Notification) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    NotificationTable(
                        id=notification.id,
                        user_id=notification.user_id,
                        type=notification.type,
                        title=notification.title,
                        message=notification.message,
                        metadata_=dict(notification.metadata),
                        is_read=notification.is_read,
                        created_at=notification.created_at,
                    )
                )

    async def list_for(
        self, user_id: str, *, page: int, limit: int, unread_only: bool
    ) -> tuple[list[Notification], int]:
        conditions = [NotificationTable.user_id == user_id]
        if unread_only:
            conditions.append(NotificationTable.is_read.is_(False))
        async with self._session_factory() as session:
            count_result = await session.execute(
                select(func.count()).select_from(NotificationTable).where(*conditions)
            )
            result = await session.execute(
                select(NotificationTable)
                .where(*conditions)
                .order_by(NotificationTable.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = result.scalars().all()
        return [self._table_to_notification(row) for row in rows], int(count_result.scalar_one())

    async def unread_count(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(NotificationTable)
                .where(NotificationTable.user_id == user_id, NotificationTable.is_read.is_(False))
            )
            return int(result.scalar_one())

    async def mark_read(self, notification_id: str, user_id: str) -> Notification | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(NotificationTable, notification_id)
                if row is None or row.user_id != user_id:
                    return None
                row.is_read = True
                notification = self._table_to_notification(row)
        return notification

    async def mark_all_read(self, user_id: str) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(NotificationTable)
                    .where(NotificationTable.user_id == user_id, NotificationTable.is_read.is_(False))
                    .values(is_read=True)
                )
        return int(result.rowcount or 0)

    async def delete(self, notification_id: str, user_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(NotificationTable).where(
                        NotificationTable.id == notification_id, NotificationTable.user_id == user_id
                    )
                )
        return bool(result.rowcount)

    @staticmethod
    def _table_to_notification(row: NotificationTable) -> Notification:
        return Notification(
            id=row.id,
            user_id=row.user_id,
            type=row.type,
            title=row.title,
            message=row.message,
            metadata=dict(row.metadata_ or {}),
            is_read=row.is_read,
            created_at=ensure_datetime(row.created_at),
        )


class NotificationService:
    """Record notifications durably and push them to the user's live channel."""

    def __init__(
        self,
        repository: NotificationRepository,
        registry: SubscriptionRegistry,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def notify(
        self,
        user_id: str,
        *,
        type: str,
        title: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Notification:
        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            metadata=dict(metadata or {}),
            is_read=False,
            created_at=self._clock(),
        )
        await self._repository.create(notification)
        delivered = self._registry.publish(
            Event(
                channel=user_channel(user_id),
                type=EventType.NOTIFICATION,
                payload={
                    "id": notification.id,
                    "type": type,
                    "title": title,
                    "message": message,
                    **notification.metadata,
                },
            )
        )
        logger.debug("Notification %s for user %s delivered live to %d client(s)", notification.id, user_id, delivered)
        return notification

    async def list_for(
        self, user_id: str, *, page: int = 1, limit: int = 20, unread_only: bool = False
    ) -> NotificationPage:
        items, total = await self._repository.list_for(user_id, page=page, limit=limit, unread_only=unread_only)
        return NotificationPage(items=items, page=page, limit=limit, total=total)

    async def unread_count(self, user_id: str) -> int:
        return await self._repository.unread_count(user_id)

    async def mark_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self._repository.mark_read(notification_id, user_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return notification

    async def mark_all_read(self, user_id: str) -> int:
        return await self._repository.mark_all_read(user_id)

    async def delete(self, notification_id: str, user_id: str) -> None:
        if not await self._repository.delete(notification_id, user_id):
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
