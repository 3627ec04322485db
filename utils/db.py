"""
Database engine setup and transactional scopes.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import SessionTransactionOrigin

from models import Base


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT works and writers serialize."""

    @event.listens_for(engine.sync_engine, 'connect')
    def do_connect(dbapi_connection, connection_record):
        # Stop the driver from emitting its own BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, applying the SQLite transaction fix when needed."""
    engine = create_async_engine(database_url, echo=echo)
    if engine.dialect.name == 'sqlite':
        _enable_sqlite_transactions(engine)
    return engine


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Transactional scope for one core operation.

    Opens a transaction and commits it on success, rolling back on any
    exception. A transaction the session autobegan for earlier reads has no
    owner to commit it, so it is committed first and this scope starts its
    own. Inside a transaction opened with ``begin()`` or ``atomic()`` the
    scope becomes a SAVEPOINT and the outer owner decides the commit.
    """
    transaction = session.sync_session.get_transaction()
    if transaction is not None and transaction.origin is SessionTransactionOrigin.AUTOBEGIN:
        await session.commit()

    if session.in_transaction():
        async with session.begin_nested():
            yield session
    else:
        async with session.begin():
            yield session


class Database:
    """Owns the engine and session factory for the process."""

    def __init__(self, database_url: str, echo: bool = False):
        self.engine = create_engine(database_url, echo=echo)
        self.session_maker = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def get_session(self) -> AsyncSession:
        """Get a database session."""
        return self.session_maker()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction that commits on exit."""
        async with self.session_maker() as session:
            async with session.begin():
                yield session

    async def dispose(self) -> None:
        await self.engine.dispose()
