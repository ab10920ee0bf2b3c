from sqlalchemy import Enum
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from reliefops.config import Settings


class Base(DeclarativeBase):
    pass


def make_engine(settings: Settings) -> AsyncEngine:
    """Build the async engine; the caller owns its lifecycle and must dispose it."""
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        connect_args={"server_settings": {"application_name": "reliefops-backend"}},
    )


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def value_enum(enum_cls: type, name: str) -> Enum:
    """Enum column stored by value ("In Progress"), matching the existing schema's VARCHAR checks."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )
