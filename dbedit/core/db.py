# dbedit/core/db.py
import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from dbedit.core.config import settings

logger = logging.getLogger(__name__)

# Created lazily by get_engine()
engine: Optional[Engine] = None


def create_db_engine(url: Optional[str] = None) -> Engine:
    """Create the SQLAlchemy engine for the edited database"""
    url = url or settings.SQLALCHEMY_DATABASE_URI

    if url.startswith("sqlite"):
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
        return create_engine(
            url,
            echo=settings.DB_ECHO,
            connect_args={"check_same_thread": False}  # Needed for SQLite
        )

    return create_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before using them
        pool_recycle=3600  # Recycle connections after an hour
    )


def get_engine() -> Engine:
    global engine

    if engine is None:
        engine = create_db_engine()
        logger.info(f"Database engine created for dialect {engine.dialect.name}")

    return engine


def check_connection() -> bool:
    """Run a trivial query to confirm the database is reachable"""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")
        return False


# Dependency for API endpoints
def get_connection() -> Generator[Connection, None, None]:
    conn = get_engine().connect()
    try:
        yield conn
    finally:
        conn.close()
