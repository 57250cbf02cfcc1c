"""Database session and engine setup."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from campaign_dialer.config import get_settings
from campaign_dialer.db.base import Base

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create any missing tables."""
    import campaign_dialer.db.models  # noqa: F401  # Ensure models are registered

    async with (bind or engine).begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
