"""Database engine and async session factory."""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from otp_auth.models import otp  # noqa: F401  (registers the otps table)
from otp_auth.models.user import Base


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for *database_url* (connects lazily)."""
    return create_async_engine(database_url, echo=echo)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that don't yet exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
