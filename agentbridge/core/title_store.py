"""Conversation title storage.

The only durable state the bridge owns: one title per conversation root post.
"""

import logging
from typing import Optional

from sqlalchemy import Column, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


class PostMeta(Base):
    """SQLAlchemy model for LLM_PostMeta."""

    __tablename__ = "LLM_PostMeta"

    root_post_id = Column("RootPostID", String(26), primary_key=True)
    title = Column("Title", Text, nullable=False, default="")


class TitleStore:
    """Upserts and reads conversation titles.

    Usage:
        store = TitleStore(database_url)
        await store.initialize()

        await store.save_title(root_post_id, "Quarterly planning")
        title = await store.get_title(root_post_id)
    """

    def __init__(self, database_url: str):
        """Initialize the title store.

        Args:
            database_url: SQLAlchemy async connection URL
                Example: sqlite+aiosqlite:///./agentbridge.db
        """
        self.database_url = database_url
        self.engine = create_async_engine(database_url, echo=False)
        self.async_session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def initialize(self):
        """Create tables if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Title store initialized")

    async def save_title(self, root_post_id: str, title: str) -> None:
        """Insert or replace the title for a conversation."""
        async with self.async_session() as session:
            await session.merge(PostMeta(root_post_id=root_post_id, title=title))
            await session.commit()

    async def get_title(self, root_post_id: str) -> Optional[str]:
        async with self.async_session() as session:
            result = await session.execute(select(PostMeta.title).where(PostMeta.root_post_id == root_post_id))
            return result.scalar_one_or_none()

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()
