from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from qbank_attempts.core.config import Settings, settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(cfg: Settings = settings) -> Engine:
    if cfg.is_sqlite():
        # check_same_thread=False is needed only for SQLite with multiple threads
        return create_engine(cfg.DATABASE_URL, future=True, connect_args={"check_same_thread": False})
    return create_engine(
        cfg.DATABASE_URL,
        future=True,
        pool_pre_ping=True,
        pool_size=cfg.DATABASE_POOL_SIZE,
        max_overflow=cfg.DATABASE_MAX_OVERFLOW,
        pool_timeout=cfg.DATABASE_POOL_TIMEOUT,
        connect_args={"options": f"-c statement_timeout={cfg.DATABASE_STATEMENT_TIMEOUT_MS}"},
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


engine = build_engine()
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine = engine) -> None:
    """Create tables if they don't exist. Production schemas are managed by the store owner."""
    from qbank_attempts.models import orm  # noqa: F401

    Base.metadata.create_all(bind=bind)
