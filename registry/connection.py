"""
Registry Database Connections

Session handling for the company registry: settings resolved from the
environment or config.yaml, an engine created with retry, session scopes
and a Unit of Work for the import and maintenance paths.

SQLite URLs (local registries and the test suite) get foreign keys and
real SAVEPOINT support so the guard's nested transactions and the partial
unique ticker index behave the same way they do on PostgreSQL.
"""

import os
import logging
from typing import Generator, Optional
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from registry.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DB = "ethiccheck"


# ============================================
# SETTINGS
# ============================================

@dataclass
class DatabaseSettings:
    """Where the registry lives and how connections are pooled."""
    host: str = "localhost"
    port: int = 5432
    database: str = DEFAULT_DB
    user: str = DEFAULT_DB
    password: str = DEFAULT_DB
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None
    connect_attempts: int = 3

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        """Read DATABASE_URL or the DB_* variables."""
        env = os.getenv
        return cls(
            host=env("DB_HOST", "localhost"),
            port=int(env("DB_PORT", "5432")),
            database=env("DB_NAME", DEFAULT_DB),
            user=env("DB_USER", DEFAULT_DB),
            password=env("DB_PASSWORD", DEFAULT_DB),
            pool_size=int(env("DB_POOL_SIZE", "5")),
            max_overflow=int(env("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(env("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(env("DB_POOL_RECYCLE", "1800")),
            echo=env("DB_ECHO", "false").lower() == "true",
            url=env("DATABASE_URL")
        )

    @classmethod
    def from_config(cls, config) -> 'DatabaseSettings':
        """Build settings from a ConfigManager; DATABASE_URL still wins."""
        db = config.database
        return cls(
            host=db.host,
            port=db.port,
            database=db.name,
            user=db.user,
            password=db.password,
            pool_size=db.pool_size,
            echo=db.echo,
            url=os.getenv("DATABASE_URL") or db.url
        )

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")

    def get_url(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    def get_pool_settings(self) -> dict:
        """QueuePool arguments for server databases; SQLite gets none."""
        if self.is_sqlite:
            return {}
        return {
            "poolclass": QueuePool,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


# ============================================
# SQLITE SUPPORT
# ============================================

def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    Make pysqlite honour SAVEPOINT and foreign keys.

    The driver normally issues its own BEGIN lazily, which breaks
    Session.begin_nested(). Turning that off and emitting BEGIN from the
    engine's begin event restores proper nested transactions.
    """

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def create_memory_engine() -> Engine:
    """Single-connection in-memory SQLite engine shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    return enable_sqlite_savepoints(engine)


# ============================================
# UNIT OF WORK
# ============================================

class UnitOfWork:
    """
    One explicit transaction over one session.

    Nothing is committed unless commit() is called; leaving the block on
    an exception rolls back.

        with provider.get_unit_of_work() as uow:
            outcome = ImportGuard(uow.session, config).create_safely(candidate)
            if outcome.success:
                uow.commit()
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self.close()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork not started. Use as context manager.")
        return self._session

    def commit(self) -> None:
        if self._session:
            self._session.commit()

    def rollback(self) -> None:
        if self._session:
            self._session.rollback()

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Owns the engine and hands out sessions to the registry services and CLIs.

        provider = DatabaseSessionProvider(DatabaseSettings.from_config(config))
        with provider.session_scope() as session:
            report = RegistryMonitor(session, config).run_monitoring()
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    def init(self, echo: Optional[bool] = None) -> None:
        """Create the engine (unless one was injected) and the session factory."""
        if self.initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._connect()

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info(f"Registry database ready ({self._engine.url.get_backend_name()})")

    def _connect(self) -> Engine:
        connect = retry(
            stop=stop_after_attempt(self._settings.connect_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(OperationalError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(self._open_engine)
        return connect()

    def _open_engine(self) -> Engine:
        engine = create_engine(
            self._settings.get_url(),
            echo=self._settings.echo,
            **self._settings.get_pool_settings()
        )
        if self._settings.is_sqlite:
            enable_sqlite_savepoints(engine)

        # Fail fast so the retry sees connection errors here
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    def get_unit_of_work(self) -> UnitOfWork:
        self.init()
        return UnitOfWork(self._session_factory)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on any exception."""
        self.init()

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create the registry schema directly (local and test databases)."""
        self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Registry tables created")

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Registry database health check failed: {e}")
            return False

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Registry database engine disposed")
        self._session_factory = None


# ============================================
# MODULE-LEVEL PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider(settings: Optional[DatabaseSettings] = None) -> DatabaseSessionProvider:
    """Return the process-wide provider, creating it on first use."""
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider(settings=settings)
    return _db_provider


def init_db(settings: Optional[DatabaseSettings] = None, echo: bool = False) -> DatabaseSessionProvider:
    """Initialize the process-wide provider at script startup."""
    provider = get_db_provider(settings)
    provider.init(echo=echo)
    return provider


def close_db() -> None:
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider for tests; defaults to an in-memory SQLite URL."""
    return DatabaseSessionProvider(
        settings=settings or DatabaseSettings(url="sqlite://"),
        engine=engine
    )
