import re
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import async_sessionmaker
from schoolhub.config import settings


def build_database_url(raw_url: str) -> str:
    """Normalize a postgres URL so it is served by the asyncpg driver."""
    if raw_url.startswith("postgresql://") or raw_url.startswith("postgres://"):
        db_url = re.sub(r"^postgres(ql)?://", "postgresql+asyncpg://", raw_url)
        # asyncpg does not understand sslmode, SSL is passed as a connect arg instead
        return re.sub(r"[?&]sslmode=\w+", "", db_url)
    return raw_url


db_url = build_database_url(settings.DATABASE_URL)

connect_args = {}
if settings.DATABASE_SSL and db_url.startswith("postgresql+asyncpg"):
    connect_args["ssl"] = True

# Create async SQLAlchemy engine
engine = create_async_engine(
    db_url,
    echo=settings.DATABASE_ECHO,
    future=True,
    connect_args=connect_args,
)

# Create base class for models
Base = declarative_base()

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)

# Dependency to get DB session
async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
