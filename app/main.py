from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.api.routes import ping, tickets
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging, init_tracer, shutdown_tracer
from app.middleware import ProfileMiddleware
from app.tickets.repository import TicketRepository
from app.tickets.service import TicketService
from app.tickets.state import TicketStateMachine


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_ticket_service(settings: Settings, repository: TicketRepository) -> TicketService:
    return TicketService(
        repository,
        state_machine=TicketStateMachine(settings.edit_lockout_policy),
        required_fields=settings.submission_required_fields,
        default_sbu=settings.default_sbu,
        ticket_number_prefix=settings.ticket_number_prefix,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.ticket_service = None
    db_engine = None
    try:
        db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = TicketRepository(session_factory, engine=db_engine)
        await repository.ensure_schema()
        app.state.ticket_service = build_ticket_service(settings, repository)
        app.state.db_engine = db_engine
    except Exception:
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
    app.add_middleware(ProfileMiddleware)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    return app


app = create_app()
