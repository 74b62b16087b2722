import logging
import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


DB_LOGGER = logging.getLogger("rental_ledger.db")


def lock_timeout_seconds() -> int:
    raw = os.environ.get("RENTAL_LEDGER_LOCK_TIMEOUT_SECONDS") or "10"
    try:
        return max(1, int(raw))
    except ValueError:
        return 10


def _install_lock_timeout(engine: Engine, timeout_seconds: int) -> None:
    dialect = engine.dialect.name

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            if dialect == "sqlite":
                cursor.execute(f"PRAGMA busy_timeout = {timeout_seconds * 1000}")
                cursor.execute("PRAGMA foreign_keys = ON")
            elif dialect in {"mysql", "mariadb"}:
                cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {timeout_seconds}")
            elif dialect == "postgresql":
                cursor.execute(f"SET lock_timeout = '{timeout_seconds}s'")
        finally:
            cursor.close()


def build_engine(url: str, *, echo: bool = False, timeout_seconds: int | None = None) -> Engine:
    timeout = timeout_seconds or lock_timeout_seconds()
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
    engine = create_engine(
        url,
        pool_pre_ping=True,
        echo=echo,
        future=True,
        connect_args=connect_args,
    )
    _install_lock_timeout(engine, timeout)
    DB_LOGGER.debug("Engine created for %s (lock timeout %ss)", engine.dialect.name, timeout)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
