from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from blogcore.config import settings
from blogcore.middleware import install_query_counter
from blogcore.storage import settle_media

# Module-level engine and session factory; tests rebind both to an
# in-memory engine.  Background work (view increments) looks the factory
# up at call time so the rebinding applies there too.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

install_query_counter(engine)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            await settle_media(session, committed=False)
            raise
        await settle_media(session, committed=True)
