from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from core.config import settings


class Base(DeclarativeBase):
    pass


if settings.DATABASE_URL.startswith("sqlite"):
    # StaticPool keeps a single in-memory database alive across sessions
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if ":memory:" in settings.DATABASE_URL else None,
    )
else:
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        pool_pre_ping=True,
    )

# Objects stay readable after commit; order writes re-read explicitly when they need fresh state
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db() -> None:
    """Create the users and orders tables (dev/test; use migrations in production)."""
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator:
    """One session per request; closed when the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
