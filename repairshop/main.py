from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from repairshop.accounts import AccountRepository
from repairshop.api.routes import health, notifications, realtime, tickets
from repairshop.core.config import get_settings
from repairshop.core.logging import configure_logging, init_tracer, shutdown_tracer
from repairshop.middleware import RBACMiddleware
from repairshop.notifications import NotificationRepository, NotificationService
from repairshop.realtime import SubscriptionRegistry
from repairshop.storage import LocalPhotoStorage
from repairshop.tickets.repository import TicketRepository
from repairshop.tickets.service import TicketService


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.registry = SubscriptionRegistry(staff_channel=settings.staff_channel)
    app.state.photo_storage = LocalPhotoStorage(settings.upload_dir)
    app.state.ticket_service = None
    app.state.notification_service = None
    app.state.accounts = None

    db_engine = None
    try:
        db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_dsn), future=True)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        ticket_repository = TicketRepository(session_factory, engine=db_engine)
        await ticket_repository.ensure_schema()

        accounts = AccountRepository(session_factory)
        notification_service = NotificationService(NotificationRepository(session_factory), app.state.registry)
        app.state.ticket_service = TicketService(
            ticket_repository,
            accounts=accounts,
            registry=app.state.registry,
            notifications=notification_service,
            storage=app.state.photo_storage,
            ticket_prefix=settings.ticket_number_prefix,
            photos_per_stage=settings.photos_per_stage,
            number_attempts=settings.ticket_number_max_attempts,
            min_search_digits=settings.min_search_phone_digits,
        )
        app.state.notification_service = notification_service
        app.state.accounts = accounts
        app.state.db_engine = db_engine
        app.state.db_session_factory = session_factory
        logger.info("Ticket service ready (%s)", settings.environment)
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Ticket service initialisation failed")
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(health.router)
    app.include_router(tickets.router)
    app.include_router(notifications.router)
    app.include_router(realtime.router)
    upload_root = Path(settings.upload_dir)
    app.mount("/uploads", StaticFiles(directory=upload_root, check_dir=False), name="uploads")
    return app


app = create_app()
