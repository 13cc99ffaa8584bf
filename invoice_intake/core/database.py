from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from invoice_intake.core.config import settings

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def async_database_url(url: str) -> str:
    """Swap a plain database URL onto its async driver; URLs naming a driver pass through."""
    for prefix, async_prefix in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    # Reconnect after a database restart instead of failing the next approval
    return create_async_engine(async_database_url(url), echo=echo, pool_pre_ping=True)


engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Timestamp default for DateTime(timezone=True) columns."""
    return datetime.now(timezone.utc)
