"""
Database engine and session management for the semantic categorizer.

Every cache write, ready-flag update and model upsert runs in its own short
session; nothing holds a transaction open across a provider call.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from sqlalchemy import create_engine, func, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import CategorizerConfig
from ..exceptions import DatabaseError, SemanticCategorizerError
from .models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Pool settings for server backends; jobs run one at a time per process
_SERVER_POOL = {
    "pool_size": 5,
    "max_overflow": 5,
    "pool_pre_ping": True,
    "pool_recycle": 3600,
}

_BACKEND_CONNECT_ARGS = {
    "postgresql": {"connect_timeout": 30, "application_name": "semantic_categorizer"},
    "mysql": {"connect_timeout": 30, "charset": "utf8mb4"},
}


@dataclass
class RetryPolicy:
    """Backoff for transient database errors (locked file, dropped connection)."""

    max_retries: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        delay = self.initial_delay
        for _ in range(self.max_retries):
            yield delay
            delay *= self.multiplier


class DatabaseManager:
    """
    Owns the SQLAlchemy engine and hands out short-lived sessions.

    SQLite shares one connection (StaticPool) so in-memory databases survive
    across sessions; PostgreSQL and MySQL get a small pre-pinged pool.
    """

    def __init__(
        self, config: CategorizerConfig, retry_policy: Optional[RetryPolicy] = None
    ):
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy()
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None

        try:
            self.engine = create_engine(
                self.config.database_url, **self._get_engine_kwargs()
            )
            self.SessionLocal = sessionmaker(
                bind=self.engine, autoflush=False, expire_on_commit=False
            )
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            raise DatabaseError(
                f"Failed to initialize database engine: {e}",
                operation="initialize_engine",
            )

        logger.debug(f"Database ready ({self.backend})")

    @property
    def backend(self) -> str:
        """Backend name of the configured URL, e.g. ``sqlite``."""
        try:
            return make_url(self.config.database_url).get_backend_name()
        except Exception:
            return self.config.database_url.split(":", 1)[0].lower()

    def _get_engine_kwargs(self) -> Dict[str, Any]:
        """Engine options for the configured backend."""
        backend = self.backend

        if backend == "sqlite":
            return {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False, "timeout": 30},
            }

        kwargs: Dict[str, Any] = {"pool_pre_ping": True}
        if backend in _BACKEND_CONNECT_ARGS:
            kwargs.update(_SERVER_POOL)
            kwargs["connect_args"] = dict(_BACKEND_CONNECT_ARGS[backend])
        return kwargs

    def create_tables(self) -> None:
        """Create the cache, keyword, sample and model tables if missing."""
        self._run_ddl(Base.metadata.create_all, "create_tables")

    def drop_tables(self) -> None:
        """Drop every table (tests and cache resets)."""
        self._run_ddl(Base.metadata.drop_all, "drop_tables")

    def _run_ddl(self, ddl: Callable[..., None], operation: str) -> None:
        try:
            ddl(bind=self.engine)
        except Exception as e:
            raise DatabaseError(f"{operation} failed: {e}", operation=operation)

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """
        Session that commits on success and rolls back on any error.

        Library errors raised inside the block propagate unchanged; anything
        else is wrapped in DatabaseError.
        """
        if self.SessionLocal is None:
            raise DatabaseError("Database not initialized", operation="get_session")

        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            if isinstance(e, SemanticCategorizerError):
                raise
            raise DatabaseError(
                f"Database session error: {e}", operation="session_operation"
            )
        finally:
            session.close()

    def execute_with_retry(self, operation_func: Callable[..., T], *args, **kwargs) -> T:
        """
        Call ``operation_func``, retrying ``OperationalError`` with backoff.

        Other failures are not retried: library errors propagate as they are,
        anything else is wrapped in DatabaseError.
        """
        delays = self.retry_policy.delays()
        attempt = 0

        while True:
            attempt += 1
            try:
                return operation_func(*args, **kwargs)
            except OperationalError as e:
                delay = next(delays, None)
                if delay is None:
                    raise DatabaseError(
                        f"Database operation failed after {attempt} attempts: {e}",
                        operation="execute_with_retry",
                    )
                logger.warning(
                    f"Transient database error on attempt {attempt}, "
                    f"retrying in {delay:.1f}s: {e}"
                )
                time.sleep(delay)
            except SemanticCategorizerError:
                raise
            except Exception as e:
                raise DatabaseError(
                    f"Database operation failed: {e}",
                    operation="execute_with_retry",
                )

    def get_table_info(self) -> Dict[str, Any]:
        """Row counts per table, used by the cache-stats command."""
        info: Dict[str, Any] = {}
        with self.get_session() as session:
            for name, table in Base.metadata.tables.items():
                try:
                    count = session.execute(
                        select(func.count()).select_from(table)
                    ).scalar()
                    info[name] = {"row_count": int(count or 0)}
                except OperationalError as e:
                    session.rollback()
                    info[name] = {"error": str(e)}
        return info

    def close(self) -> None:
        """Dispose of the engine; the manager cannot be used afterwards."""
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None
