"""Database engine and session factory setup."""

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ipo_readiness.core.models import TEMPLATE_BANK_STATE_ID, Base, TemplateBankStateRow


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine.

    In-memory SQLite databases share one connection so every session sees
    the same tables.
    """
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(database_url, echo=echo)


async def init_database(
    database_url: str,
    echo: bool = False,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the engine, the session factory and any missing tables.

    The template bank state row is seeded at version 0 so version bumps
    only ever update it.

    Args:
        database_url: SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///./ira.db``.
        echo: Log emitted SQL.

    Returns:
        Tuple of (engine, session factory).
    """
    engine = create_engine(database_url, echo=echo)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
        seeded = await connection.scalar(
            select(TemplateBankStateRow.id).where(TemplateBankStateRow.id == TEMPLATE_BANK_STATE_ID)
        )
        if seeded is None:
            await connection.execute(
                insert(TemplateBankStateRow).values(id=TEMPLATE_BANK_STATE_ID, version=0)
            )
    return engine, async_sessionmaker(engine, expire_on_commit=False)
