"""Engine + session factory."""

import logging
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from config import AppConfig

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _ensure_data_dir(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        db_path = database_url.replace("sqlite:///", "")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def get_engine(database_url: str = None):
    database_url = database_url or AppConfig.DATABASE_URL
    _ensure_data_dir(database_url)
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False)

    connect_args = {"check_same_thread": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every thread sees its own empty database
        return create_engine(database_url, echo=False, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(database_url, echo=False, connect_args=connect_args)


def init_db(engine):
    """Create all tables."""
    # Import models so they are registered on Base.metadata
    import models.negotiation  # noqa: F401
    import models.notification  # noqa: F401
    import models.connection  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info("Database tables ready")
    return engine


def make_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory):
    """Commit on success, rollback on any error."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
