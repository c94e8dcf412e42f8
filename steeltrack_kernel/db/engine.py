"""
Module: steeltrack_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities, held by an explicit ``Database``
    resource handle.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (except create_tables, which imports models so metadata is complete).

Invariants enforced:
    - No process-global connection state.  Every caller receives a
      ``Database`` by reference and opens request-scoped sessions from it;
      two ``Database`` instances never share an engine.
    - PostgreSQL sessions run at READ COMMITTED with pre-ping pooling.
      SQLite is accepted for tests and single-user tooling.
    - ``session_scope()`` commits on success and rolls back on ANY exit by
      exception, including cancellation (GeneratorExit, KeyboardInterrupt,
      asyncio.CancelledError), so an abandoned unit of work never leaves a
      partial write behind.

Failure modes:
    - OperationalError when the database is unreachable (propagates).
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from steeltrack_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Lifecycle-scoped database handle: one engine plus its session factory.

    Contract:
        Constructed once by the composition root (service startup, test
        fixture, script) and passed by reference into every request-scoped
        operation.  ``dispose()`` releases pooled connections.

    Guarantees:
        - ``session_scope()`` yields a session whose work is committed
          atomically or rolled back entirely.
        - ``session()`` returns a fresh, caller-managed session.
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
    ):
        """
        Initialize the SQLAlchemy engine from a database URL.

        Args:
            database_url: PostgreSQL (production) or SQLite (tests) URL.
            echo: If True, log all SQL statements.
            pool_size: Number of connections to keep in the pool.
            max_overflow: Max connections beyond pool_size.
            pool_pre_ping: If True, test connections before use.
            pool_timeout: Seconds to wait for a pooled connection.
            pool_recycle: Seconds after which a connection is recycled.
        """
        url = make_url(database_url)
        self.dialect_name = url.get_backend_name()

        if self.dialect_name == "sqlite":
            self._engine = create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
            event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)
        else:
            self._engine = create_engine(
                url,
                echo=echo,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=pool_pre_ping,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                isolation_level="READ COMMITTED",
            )

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info(
            "engine_initialized",
            extra={
                "dialect": self.dialect_name,
                "pool_size": pool_size,
                "max_overflow": max_overflow,
                "echo": echo,
            },
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Session factory, for multi-threaded callers that need one session per thread."""
        return self._session_factory

    @property
    def is_postgres(self) -> bool:
        return self.dialect_name == "postgresql"

    def session(self) -> Session:
        """Get a new caller-managed session."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Postconditions: On normal exit, session is committed and closed.
            On any exception (including cancellation), session is rolled
            back and closed and the exception is re-raised.

        Usage:
            with database.session_scope() as session:
                session.add(entity)
        """
        session = self.session()
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except BaseException:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """
        Create all tables defined in the models.

        All ORM models are imported here so Base.metadata is complete.
        """
        from steeltrack_kernel.db.base import Base
        import steeltrack_kernel.models  # noqa: F401

        Base.metadata.create_all(self._engine)
        logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        from steeltrack_kernel.db.base import Base
        import steeltrack_kernel.models  # noqa: F401

        Base.metadata.drop_all(self._engine)

    def dispose(self) -> None:
        """Dispose the engine, releasing all pooled connections."""
        self._engine.dispose()
