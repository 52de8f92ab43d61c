"""SQLite storage for accounts, mentions, replies and templates.

The webhook server and the CLI commands open the same database file, so each
connection waits on a locked database instead of failing at once, and
foreign keys are enforced so a deleted account takes its rows with it.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.sql.dml import UpdateBase

from ..orm.base import Base

# Seconds a connection waits for another process's write lock
LOCK_TIMEOUT_SECONDS = 30


class DatabaseService:
    """Engine and unit-of-work sessions shared by the SQL repositories.

    Sessions keep loaded rows usable after commit: repositories hand ORM
    objects to the pipeline, which mutates them and passes them back to
    ``update``.
    """

    def __init__(self, database_path: str | Path):
        self.database_path = Path(database_path).expanduser()
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{self.database_path}",
            connect_args={"timeout": LOCK_TIMEOUT_SECONDS},
        )
        event.listen(self.engine.sync_engine, "connect", _configure_sqlite)

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_schema(self) -> None:
        """Create any missing tables and indexes."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def execute_write(self, statement: UpdateBase) -> int:
        """Run one UPDATE/DELETE in its own transaction.

        Returns:
            Number of rows the statement matched.
        """
        async with self.session() as session:
            result: CursorResult = await session.execute(statement)
            return result.rowcount

    async def close(self) -> None:
        await self.engine.dispose()


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


async def init_db_service(database_path: str | Path) -> DatabaseService:
    """Open the database at ``database_path``, creating the schema if needed."""
    db_service = DatabaseService(database_path)
    await db_service.create_schema()
    return db_service
