from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from notification_dispatch.config import settings

# Database setup
engine = create_async_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO, pool_pre_ping=True)
# Records are read after commit (claim, transitions), so keep them loaded
AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)

async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
