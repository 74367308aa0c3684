"""Database engine setup.

SQLite URLs get ``check_same_thread=False`` because FastAPI runs sync routes
in a threadpool; in-memory SQLite additionally shares one connection so every
session sees the same schema.
"""

from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from intake.core.config import settings

raw_url = settings.DATABASE_URL or "sqlite:///./storage/intake.db"
url = make_url(raw_url)

if url.get_backend_name() == "sqlite":
    if url.database in (None, "", ":memory:"):
        engine = create_engine(
            raw_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(raw_url, future=True, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        raw_url,
        future=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,
    )
SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create tables that do not exist yet."""
    from intake.db.base_class import Base
    from intake.models import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
