"""
Engine and session management for the catalog database.

The catalog lives in SQLite (local runs and tests), MySQL/MariaDB or
PostgreSQL. ``DATABASE_URL`` wins when set; otherwise the URL is assembled
from ``DB_TYPE``, ``DB_HOST``, ``DB_PORT``, ``DB_NAME``, ``DB_USER`` and
``DB_PASSWORD``. The process entry point owns one DatabaseConfig and passes
``get_session`` to everything that reads catalog rows or writes watermarks.
"""

import os
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .models import create_all_tables

logger = logging.getLogger(__name__)

# driver, default port, default user per server backend
SERVER_BACKENDS = {
    "mysql": ("mysql+pymysql", "3306", "root"),
    "mariadb": ("mysql+pymysql", "3306", "root"),
    "postgresql": ("postgresql", "5432", "postgres"),
}
DEFAULT_DB_NAME = "pilot_catalog"


def database_url_from_env() -> str:
    """
    Resolve the catalog database URL from the environment.

    Raises:
        ValueError: If DB_TYPE names a backend we cannot talk to
    """
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    db_type = os.getenv("DB_TYPE", "sqlite").lower()
    if db_type == "sqlite":
        return f"sqlite:///{os.getenv('DB_NAME', DEFAULT_DB_NAME + '.db')}"
    if db_type not in SERVER_BACKENDS:
        raise ValueError(f"Unsupported database type: {db_type}")

    driver, default_port, default_user = SERVER_BACKENDS[db_type]
    url = (
        f"{driver}://{os.getenv('DB_USER', default_user)}:{os.getenv('DB_PASSWORD', '')}"
        f"@{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', default_port)}"
        f"/{os.getenv('DB_NAME', DEFAULT_DB_NAME)}"
    )
    if driver.startswith("mysql"):
        url += "?charset=utf8mb4"
    return url


def _backend_of(url: str) -> str:
    for prefix in ("sqlite", "mysql", "postgresql"):
        if url.startswith(prefix):
            return prefix
    return "unknown"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseConfig:
    """
    Lazily initialized engine plus session factory for one catalog database.

    Sessions do not expire on commit: the pattern generator keeps reading
    loaded rows after the watermark source commits.
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or database_url_from_env()
        self.echo = echo
        self.db_type = _backend_of(self.database_url)
        self.engine_kwargs = self._engine_options()
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._is_initialized = False
        logger.info(f"Catalog database configured ({self.db_type})")

    def _engine_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"echo": self.echo, "future": True, "pool_pre_ping": True}

        if self.db_type == "sqlite":
            # a single shared connection keeps ":memory:" databases alive across sessions
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False, "timeout": 30}
            return options

        if self.db_type in ("mysql", "postgresql"):
            options.update(
                poolclass=QueuePool,
                pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
                max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
                pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
                pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "3600")),
            )
        if self.db_type == "mysql":
            options["connect_args"] = {"charset": "utf8mb4", "connect_timeout": 30}
        return options

    def initialize(self) -> None:
        """
        Create the engine, check it answers and build the session factory.

        Raises:
            SQLAlchemyError: If the database cannot be reached
        """
        if self._is_initialized:
            return

        try:
            engine = create_engine(self.database_url, **self.engine_kwargs)
            if self.db_type == "sqlite":
                event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Catalog database unavailable: {e}")
            raise

        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._is_initialized = True
        logger.info(f"Catalog database engine ready ({self.db_type})")

    def create_tables(self) -> None:
        self.initialize()
        create_all_tables(self.engine)
        logger.info("Catalog tables created")

    def get_session(self) -> Session:
        """A new session; the caller closes it."""
        self.initialize()
        return self.SessionLocal()

    @contextmanager
    def get_session_context(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on any error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Rolled back catalog session: {e}")
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        try:
            self.initialize()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Catalog database check failed: {e}")
            return False
        return True

    def get_connection_info(self) -> Dict[str, Any]:
        """Backend, location and state, without credentials."""
        return {
            "database_type": self.db_type,
            "database_url": self.database_url.rsplit("@", 1)[-1],
            "is_initialized": self._is_initialized,
            "echo_enabled": self.echo,
        }

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Catalog database connections closed")


__all__ = [
    "DatabaseConfig",
    "database_url_from_env",
]
