import logging
from contextlib import contextmanager
from typing import Any
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from seohub.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

# Create Base class
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    Args:
        db_url: Database connection URL
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    connect_args = kwargs.pop("connect_args", {})
    if "sqlite" in db_url:
        if "check_same_thread" not in connect_args:
            connect_args["check_same_thread"] = False
        if ":memory:" not in db_url:
            connect_args.setdefault("timeout", 30)

    return create_engine(db_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps attributes readable after a commit so
    background jobs can log a row after its session has been closed.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def get_session_factory() -> sessionmaker:
    """Return the module-level session factory.

    Looked up at call time so the test-suite can swap
    ``seohub.database.default_session_factory`` for an in-memory one.
    """
    return default_session_factory


_resolved_db_url = _settings.database_url or ("sqlite:///:memory:" if _settings.testing else "sqlite:///./seohub.db")

default_engine = make_engine(_resolved_db_url)
default_session_factory = make_sessionmaker(default_engine)


def get_db(session_factory: Any = None) -> Iterator[Session]:
    """Dependency provider for database sessions.

    Args:
        session_factory: Optional custom session factory

    Yields:
        SQLAlchemy Session object
    """
    factory = session_factory or get_session_factory()
    db = factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session(session_factory: Any = None):
    """Context manager for work that runs outside a request.

    Commits on success, rolls back on error and always closes the session.
    Used by background retries and the report poller.
    """
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def initialize_database(engine: Engine = None) -> None:
    """Create all tables registered on :data:`Base`."""
    # Import models so that they are registered with Base.metadata
    import seohub.models.models  # noqa: F401

    target_engine = engine or default_engine
    Base.metadata.create_all(bind=target_engine)
    logger.info("Database tables ensured on %s", target_engine.url)


def check_connection(db: Session) -> bool:
    """Return True when a trivial query round-trips."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:  # noqa: BLE001 – any driver error means unhealthy
        logger.exception("Database health check failed")
        return False
