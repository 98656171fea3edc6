"""Database engine and sessions"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from billing_webhooks.models.base import Base
from billing_webhooks.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Local runs / scripts against a file database
        return {"connect_args": {"check_same_thread": False}}
    # Recycle before typical server-side idle timeouts
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# Ledger and billing writes commit explicitly, never on flush
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Session for scripts outside a request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create missing tables (migrations own schema changes)"""
    import billing_webhooks.models  # noqa: F401 - registers every model with Base.metadata
    Base.metadata.create_all(bind=engine)
