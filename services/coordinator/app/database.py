from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import os

# Import centralized configuration
from app.config import settings

DATABASE_URL = settings.DATABASE_URL
DEBUG_SQL = os.getenv("DEBUG_SQL", "false").lower() == "true"

if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)


def create_db_engine(url: str = DATABASE_URL):
    """Create an engine with pool settings suited to the backend."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=DEBUG_SQL, **kwargs)

    return create_engine(
        url,
        echo=DEBUG_SQL,
        pool_size=20,  # Normal connections (adjust based on load)
        max_overflow=40,  # Burst capacity (total = 60 connections max)
        pool_timeout=30,  # Wait 30s for connection before failing
        pool_recycle=1800,  # Recycle connections every 30 minutes
        pool_pre_ping=True,  # Verify connections before use (prevents stale connections)
    )


engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create tables for all registered models."""
    # Register models on Base.metadata
    from app.models import idempotency  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
