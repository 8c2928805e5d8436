"""Database utilities for the flixsync pipeline."""

from __future__ import annotations

from typing import Any

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by the ORM models."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        engine_kwargs: dict[str, Any] = {"future": True}
        if database_url.startswith("sqlite"):
            # Sync and enrichment write concurrently; wait on the file lock.
            engine_kwargs["connect_args"] = {"timeout": 30}
        self._engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = inspector.get_table_names()
        if "catalog_entries" not in table_names:
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("catalog_entries")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "tvg_id",
            "ALTER TABLE catalog_entries ADD COLUMN tvg_id VARCHAR(255)",
        )
        _ensure_column(
            "stream_id",
            "ALTER TABLE catalog_entries ADD COLUMN stream_id INTEGER",
        )
        _ensure_column(
            "content_hash",
            "ALTER TABLE catalog_entries ADD COLUMN content_hash VARCHAR(40)",
            "UPDATE catalog_entries SET content_hash = '' WHERE content_hash IS NULL",
        )
        _ensure_column(
            "metadata_checked_at",
            "ALTER TABLE catalog_entries ADD COLUMN metadata_checked_at DATETIME",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
