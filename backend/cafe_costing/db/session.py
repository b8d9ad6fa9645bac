"""Engine, session factory and the request-scoped session dependency."""

import logging
import os
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from cafe_costing.core.config import settings
from cafe_costing.db.base import Base

logger = logging.getLogger(__name__)

_url = make_url(settings.database_url)
IS_SQLITE = _url.get_backend_name() == "sqlite"

if IS_SQLITE:
    # The invoice lock serializes writers; readers wait on the busy timeout
    connect_args = {"check_same_thread": False, "timeout": 30}
    pool_config = {"pool_pre_ping": True}
else:
    connect_args = {}
    pool_config = {
        "pool_size": 20,
        "max_overflow": 40,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=False,
    **pool_config,
)

if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create missing tables on SQLite, making the database directory first."""
    if not IS_SQLITE:
        return
    if _url.database and _url.database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(_url.database)), exist_ok=True)
    import cafe_costing.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created (SQLite mode)")


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; always closed, never committed here."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


DbSession = Annotated[Session, Depends(get_db)]
