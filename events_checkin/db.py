from __future__ import annotations
from typing import Any, AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .core.config import get_settings
from .models import Base

def _engine_options(url: str) -> Dict[str, Any]:
    # sqlite (tests, local dev) does not take pool sizing
    if url.startswith("sqlite"):
        return {}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 10}

def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, echo=False, **_engine_options(url))

settings = get_settings()
engine = build_engine(settings.database_url)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def close_db() -> None:
    await engine.dispose()

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
