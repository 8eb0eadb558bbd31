"""
Database configuration and session management for UniPool.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

engine = None
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)
Base = declarative_base()


def utcnow():
    """Naive UTC timestamp; every DateTime column stores naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_database_url(database_url):
    """Fix Heroku-style postgres URLs for SQLAlchemy"""
    if database_url and database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def init_engine(database_url):
    """Create the engine and bind the session factory to it"""
    global engine
    database_url = normalize_database_url(database_url)

    kwargs = {"echo": False}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases must share one connection across threads
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    if engine is not None:
        engine.dispose()
    engine = create_engine(database_url, **kwargs)
    SessionLocal.configure(bind=engine)
    return engine


def init_db():
    """Initialize database tables"""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def drop_db():
    Base.metadata.drop_all(bind=engine)


@contextmanager
def get_db():
    """Context manager for database sessions with automatic commit/rollback"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
