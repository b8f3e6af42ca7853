import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

# Set once at startup (app lifespan or a script), read by script_db_session
_session_factory: Optional[sessionmaker] = None


def set_global_session_factory(factory: sessionmaker) -> None:
    global _session_factory
    _session_factory = factory
    logger.info("Session factory registered.")


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request, taken from the factory the lifespan put on app.state.

    Services commit their own work. Closing the session discards anything
    a failed route left uncommitted.
    """
    factory: sessionmaker = request.app.state.session_factory
    async with factory() as session:
        yield session


@asynccontextmanager
async def script_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for the seed script and other jobs that run outside a request."""
    if _session_factory is None:
        raise RuntimeError("Session factory not registered. Call set_global_session_factory first.")

    async with _session_factory() as session:
        try:
            yield session
        except Exception:
            logger.exception("Script session failed, rolling back")
            await session.rollback()
            raise
