"""
Project store database

Only the synced_data table lives here.  Tables are created with init_db()
at startup; there are no migrations.
"""
import os
from typing import Callable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from ranklens.config import get_settings

settings = get_settings()


def resolve_database_url(url: str) -> str:
    """Make relative SQLite paths absolute so a cwd change can't point at a new file"""
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        return "sqlite:///" + os.path.abspath(url[len("sqlite:///"):])
    return url


def build_engine(url: str) -> Engine:
    url = resolve_database_url(url)
    if url.startswith("sqlite"):
        # The sync job and the API may hold the file at the same time
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
        )
    return create_engine(url, pool_pre_ping=True, pool_size=3, max_overflow=5, pool_recycle=300)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create missing tables"""
    Base.metadata.create_all(bind=bind or engine)


def check_db(session_factory: Callable[[], Session] = SessionLocal) -> bool:
    """True when the project store answers a trivial query"""
    db = session_factory()
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
    finally:
        db.close()
