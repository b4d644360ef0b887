"""Read access to shop accounts needed by the ticket core and auth boundary."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from repairshop.db.models import UserTable
from repairshop.tickets.models import Requester, Role, StaffMember


class AccountRepository:
    """Look up users by id or bearer token."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_member(self, user_id: str) -> StaffMember | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
        if row is None:
            return None
        return _row_to_member(row)

    async def resolve_token(self, token: str) -> Requester | None:
        """Return the active account owning ``token``."""

        async with self._session_factory() as session:
            result = await session.execute(select(UserTable).where(UserTable.access_token == token))
            row = result.scalars().first()
        if row is None or not row.is_active:
            return None
        member = _row_to_member(row)
        return Requester(id=row.id, role=member.role, phone=row.phone, display_name=member.full_name)


def _row_to_member(row: UserTable) -> StaffMember:
    return StaffMember(id=row.id, role=Role(row.role), first_name=row.first_name, last_name=row.last_name)
