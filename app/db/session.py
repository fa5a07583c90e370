from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings


def install_sqlite_immediate_begin(engine: Engine) -> None:
    """
    pysqlite defers BEGIN until the first write, so a count read before an
    insert would run outside the transaction. Taking the write lock up front
    with BEGIN IMMEDIATE serializes admission transactions on SQLite the same
    way SELECT ... FOR UPDATE on the session row does on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str) -> Engine:
    settings = get_settings()

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.sqlite_busy_timeout_seconds,
            },
            future=True,
        )
        install_sqlite_immediate_begin(engine)
        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        future=True,
    )


settings = get_settings()

DATABASE_URL = settings.database_url  # fail fast if missing

engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
