from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.app.core.settings import get_settings

settings = get_settings()

# SQLite (local development) does not accept the pool sizing arguments
if settings.is_sqlite:
    engine = create_async_engine(
        url=settings.DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_async_engine(
        url=settings.DATABASE_URL,
        echo=False,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Check connections before handing them out
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_timeout=30,
    )
async_session = async_sessionmaker(engine, expire_on_commit=False)
