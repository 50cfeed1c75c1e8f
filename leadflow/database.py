"""
Database engine + session factory.

Defaults to SQLite for local dev, Postgres in production. Components receive
a session factory at construction; get_session is the default one.
"""
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from leadflow.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


# Hosted Postgres injects postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

# SQLite needs different engine kwargs than Postgres
if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


@contextmanager
def session_scope(session_factory=None):
    """
    Yield a session that commits on success and rolls back on error.

    The exception is re-raised after rollback so callers (and the event
    dispatcher) see handler-level failures.
    """
    session = (session_factory or get_session)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def import_models():
    """Import every model module so Base.metadata knows all tables."""
    import leadflow.models.run  # noqa: F401
    import leadflow.models.lead  # noqa: F401
    import leadflow.models.email_record  # noqa: F401
    import leadflow.models.suppression  # noqa: F401
    import leadflow.models.contact_tracking  # noqa: F401
    import leadflow.models.progress_log  # noqa: F401


def init_db(bind=None):
    """Create all tables that don't exist yet."""
    import_models()
    Base.metadata.create_all(bind or engine)
