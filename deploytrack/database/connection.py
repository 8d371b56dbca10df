from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from fastapi import Request
from typing import Optional
import logging

from .models import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the engine and session factory for one deployment store.

    Constructed explicitly at startup and handed to whoever needs sessions;
    `open()` creates the connection pool and `close()` disposes of it.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker] = None

    async def open(self) -> None:
        if self.engine is not None:
            return
        options = {"echo": self.echo, "pool_pre_ping": True}
        if not self.url.startswith("sqlite"):
            options.update(pool_size=5, max_overflow=5)
        self.engine = create_async_engine(self.url, **options)
        self._sessionmaker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        logger.info("Database opened", extra={"dialect": self.engine.dialect.name})

    async def close(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self._sessionmaker = None
        logger.info("Database closed")

    async def create_all(self) -> None:
        """Create tables directly; migrations are the normal route outside tests."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()


# Dependency for FastAPI
async def get_db(request: Request):
    database: Database = request.app.state.database
    async with database.session() as session:
        try:
            yield session
        finally:
            await session.close()
