"""
Database service for the automation engine
Async SQLAlchemy engine/session management and table creation
"""

import logging
from pathlib import Path
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.models import Base


EXPECTED_TABLES = (
    'automation_rules', 'rule_executions', 'tasks',
    'bills_payable', 'calendar_events', 'message_entity_links'
)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseService:
    """Async database service (SQLite via aiosqlite by default)"""

    def __init__(self, database_url: str = "sqlite+aiosqlite:///./data/automations.db", echo: bool = False):
        self.database_url = database_url
        self.logger = logging.getLogger(__name__)

        url = make_url(database_url)
        self.is_sqlite = url.get_backend_name() == 'sqlite'
        engine_kwargs = {'echo': echo}

        if self.is_sqlite:
            engine_kwargs['connect_args'] = {"check_same_thread": False}
            if not url.database or url.database == ':memory:':
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs['poolclass'] = StaticPool
            else:
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        # Create async engine
        self.engine = create_async_engine(database_url, **engine_kwargs)

        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        # Create session factory
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self.logger.info(f"Database service initialized: {url.render_as_string(hide_password=True)}")

    async def create_tables(self):
        """Create all tables registered on the declarative Base"""
        self.logger.info("Creating tables using SQLAlchemy...")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self.logger.info("All tables created successfully")
        except Exception as e:
            self.logger.error(f"Error creating tables: {e}")
            raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session"""
        async with self.SessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def health_check(self) -> bool:
        """Check database connection health and that all tables exist"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                table_names = await conn.run_sync(
                    lambda sync_conn: set(inspect(sync_conn).get_table_names())
                )

            missing = [name for name in EXPECTED_TABLES if name not in table_names]
            if missing:
                self.logger.warning(f"Missing tables: {missing}")
                return False

            return True
        except Exception as e:
            self.logger.error(f"Database health check failed: {e}")
            return False

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()
        self.logger.info("Database connections closed")
