import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from helpdesk.api.errors import register_exception_handlers
from helpdesk.api.routes import ping, tickets
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.dependencies.auth import TOKEN_USER_MAP
from helpdesk.middleware import RBACMiddleware
from helpdesk.tickets import (
    AuditTrail,
    InMemoryTicketRepository,
    InMemoryUserDirectory,
    SQLTicketRepository,
    SQLUserDirectory,
    StatisticsAggregator,
    TicketRepository,
    TicketService,
    UserDirectory,
    UserRecord,
)

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def _token_users() -> list[UserRecord]:
    return [UserRecord(id=user_id, role=role) for user_id, role in TOKEN_USER_MAP.values()]


def build_ticket_service(
    settings: Settings, repository: TicketRepository, users: UserDirectory
) -> TicketService:
    audit = AuditTrail(max_comment_length=settings.max_comment_length)
    return TicketService(
        repository,
        users,
        audit=audit,
        statistics=StatisticsAggregator(settings.timezone),
        max_title_length=settings.max_title_length,
        max_description_length=settings.max_description_length,
        max_attachments=settings.max_attachments,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    db_engine = None
    app.state.db_engine = None
    app.state.db_session_factory = None
    try:
        if settings.storage_backend == "memory":
            repository: TicketRepository = InMemoryTicketRepository(
                number_prefix=settings.ticket_number_prefix
            )
            users: UserDirectory = InMemoryUserDirectory(_token_users())
        else:
            db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_dsn), future=True)
            session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
            repository = SQLTicketRepository(
                session_factory,
                engine=db_engine,
                number_prefix=settings.ticket_number_prefix,
            )
            await repository.ensure_schema()
            users = SQLUserDirectory(session_factory)
            for record in _token_users():
                await users.add_user(record)
            app.state.db_engine = db_engine
            app.state.db_session_factory = session_factory
        app.state.ticket_service = build_ticket_service(settings, repository, users)
        app_logger.info("Ticket service ready (%s storage)", settings.storage_backend)
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Ticket service initialisation failed")
        app.state.ticket_service = None
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
    register_exception_handlers(app)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    return app


app = create_app()
