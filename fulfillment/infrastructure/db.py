from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.concurrency import run_in_threadpool

from fulfillment.errors import DatabaseError
from shared.core.logging_config import get_logger

from .tables import Base

logger = get_logger(__name__)

T = TypeVar("T")


def build_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            # One shared connection so every session sees the same database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, future=True, **kwargs)
    return create_engine(database_url, echo=echo, future=True, pool_pre_ping=True)


def build_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_models(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to aware UTC; backends without time zone support return naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionRunner:
    """Runs blocking ORM work in the threadpool, one session per unit of work."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def run(self, work: Callable[[Session], T]) -> T:
        return await run_in_threadpool(self._run_sync, work)

    def _run_sync(self, work: Callable[[Session], T]) -> T:
        with self.session_factory() as session:
            try:
                result = work(session)
                session.commit()
                return result
            except IntegrityError as exc:
                session.rollback()
                logger.error(f"Integrity error: {exc.orig}")
                raise DatabaseError("Conflicting record already exists", code="integrity_error") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error(f"Database error: {exc}", exc_info=True)
                raise DatabaseError(f"Database operation failed: {exc.__class__.__name__}") from exc
