import math
from typing import Any

from sqlalchemy import event, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings


def configure_sqlite(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    SQLite ignores SELECT ... FOR UPDATE, so BEGIN IMMEDIATE is what serializes
    concurrent check-then-write sequences on that backend.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def lock_wait_seconds(timeout: float) -> int:
    return max(1, math.ceil(timeout))


def set_lock_wait_timeout(dbapi_connection: Any, seconds: int) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {int(seconds)}")
    finally:
        cursor.close()


def configure_mysql(engine: AsyncEngine, *, timeout: float) -> None:
    """Bound InnoDB row-lock waits (SELECT ... FOR UPDATE) by the store timeout."""
    seconds = lock_wait_seconds(timeout)

    @event.listens_for(engine.sync_engine, "connect")
    def _bound_lock_waits(dbapi_connection: Any, connection_record: Any) -> None:
        set_lock_wait_timeout(dbapi_connection, seconds)


def build_engine(database_url: str, *, echo: bool = False, timeout: float = 5.0, **kwargs: Any) -> AsyncEngine:
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": timeout},
            **kwargs,
        )
        configure_sqlite(engine)
        return engine
    engine = create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=timeout,
        connect_args={"connect_timeout": lock_wait_seconds(timeout)} if backend == "mysql" else {},
        **kwargs,
    )
    if backend == "mysql":
        configure_mysql(engine, timeout=timeout)
    return engine


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.echo_sql, timeout=settings.store_timeout_seconds)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
