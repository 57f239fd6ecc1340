"""
Hestia Policy Engine - Persistence

One engine per process. Request handlers get a session through get_db();
the lifecycle service commits or rolls back on its own.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_CONNECT_ARGS, DATABASE_ECHO, DATABASE_URL

engine = create_engine(DATABASE_URL, echo=DATABASE_ECHO, connect_args=DATABASE_CONNECT_ARGS)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()


def get_db():
    """FastAPI dependency: one session per request, always closed."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db():
    """Create any missing tables."""
    from .models import db_models  # noqa: F401  registers tables on Base.metadata
    Base.metadata.create_all(bind=engine)
