from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from repairshop.accounts import AccountRepository
from repairshop.db.models import UserTable
from repairshop.notifications import NotificationRepository, NotificationService
from repairshop.realtime import SubscriptionRegistry
from repairshop.tickets.models import Requester, Role, TicketDraft
from repairshop.tickets.repository import TicketRepository
from repairshop.tickets.service import TicketService

CUSTOMER_ID = "user-customer"
CUSTOMER_PHONE = "081-234-5678"
TECHNICIAN_ID = "user-tech"
SECOND_TECHNICIAN_ID = "user-tech-2"
ADMIN_ID = "user-admin"


class FixedClock:
    """Deterministic clock; ``advance`` moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_draft(**overrides) -> TicketDraft:
    values = {
        "customer_name": "Somchai Jaidee",
        "customer_email": "somchai@example.com",
        "customer_phone": CUSTOMER_PHONE,
        "device_type": "Laptop",
        "device_brand": "Lenovo",
        "device_model": "ThinkPad X1",
        "issue_description": "Screen flickers after waking from sleep",
    }
    values.update(overrides)
    return TicketDraft(**values)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def customer() -> Requester:
    return Requester(id=CUSTOMER_ID, role=Role.CUSTOMER, phone="0812345678", display_name="Somchai Jaidee")


@pytest.fixture
def technician() -> Requester:
    return Requester(id=TECHNICIAN_ID, role=Role.TECHNICIAN, display_name="Nok Srisuk")


@pytest.fixture
def admin() -> Requester:
    return Requester(id=ADMIN_ID, role=Role.ADMIN, display_name="Admin User")


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        async with session.begin():
            session.add_all(
                [
                    UserTable(
                        id=CUSTOMER_ID,
                        email="somchai@example.com",
                        first_name="Somchai",
                        last_name="Jaidee",
                        phone="0812345678",
                        role=Role.CUSTOMER.value,
                        access_token="customer-token",
                    ),
                    UserTable(
                        id=TECHNICIAN_ID,
                        email="nok@moodeng.example",
                        first_name="Nok",
                        last_name="Srisuk",
                        role=Role.TECHNICIAN.value,
                        access_token="tech-token",
                    ),
                    UserTable(
                        id=SECOND_TECHNICIAN_ID,
                        email="ploy@moodeng.example",
                        first_name="Ploy",
                        last_name="Chaiyo",
                        role=Role.TECHNICIAN.value,
                    ),
                    UserTable(
                        id=ADMIN_ID,
                        email="admin@moodeng.example",
                        first_name="Admin",
                        last_name="User",
                        role=Role.ADMIN.value,
                        access_token="admin-token",
                    ),
                    UserTable(
                        id="user-inactive",
                        email="gone@example.com",
                        first_name="Former",
                        last_name="Staff",
                        role=Role.TECHNICIAN.value,
                        is_active=False,
                        access_token="inactive-token",
                    ),
                ]
            )
    return factory


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def notification_service(session_factory, registry, clock) -> NotificationService:
    return NotificationService(NotificationRepository(session_factory), registry, clock=clock)


@pytest.fixture
def ticket_repository(session_factory, engine) -> TicketRepository:
    return TicketRepository(session_factory, engine=engine)


@pytest.fixture
def ticket_service(ticket_repository, session_factory, registry, notification_service, clock) -> TicketService:
    return TicketService(
        ticket_repository,
        accounts=AccountRepository(session_factory),
        registry=registry,
        notifications=notification_service,
        clock=clock,
    )
