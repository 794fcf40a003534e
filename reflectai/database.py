"""
SQLAlchemy model and async engine setup for the SQL-backed tree store.
"""

import logging
from typing import Any, Dict, List, Tuple

from sqlalchemy import JSON, Column, DateTime, String, delete, or_, select
from sqlalchemy.engine import make_url
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from .errors import StorageError
from .tree import SEPARATOR, TreeBackend, ancestors

logger = logging.getLogger(__name__)

Base = declarative_base()


class TreeNode(Base):
    """One leaf of the tree, keyed by its full slash-separated path."""

    __tablename__ = "tree_nodes"

    path = Column(String(1024), primary_key=True)
    value = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now())


def _within(path: str):
    # substr keeps the prefix match case-sensitive on SQLite, where LIKE is not
    prefix = path + SEPARATOR
    return or_(TreeNode.path == path, func.substr(TreeNode.path, 1, len(prefix)) == prefix)


class SqlTreeBackend(TreeBackend):
    """Tree store persisted in a single SQL table. Each write runs in one transaction."""

    def __init__(self, engine: AsyncEngine):
        super().__init__()
        self.engine = engine
        self._session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _read_rows(self, path: str) -> List[Tuple[str, Any]]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(select(TreeNode.path, TreeNode.value).where(_within(path)))
                return [(row.path, row.value) for row in result]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {path}: {e}", cause=e) from e

    async def _write(self, path: str, leaves: Dict[str, Any]) -> None:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(
                        delete(TreeNode).where(_within(path)).execution_options(synchronize_session=False)
                    )
                    parents = ancestors(path)
                    if parents:
                        await session.execute(
                            delete(TreeNode)
                            .where(TreeNode.path.in_(parents))
                            .execution_options(synchronize_session=False)
                        )
                    session.add_all([TreeNode(path=leaf, value=value) for leaf, value in leaves.items()])
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write {path}: {e}", cause=e) from e

    async def _remove(self, path: str) -> None:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(
                        delete(TreeNode).where(_within(path)).execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete {path}: {e}", cause=e) from e

    async def close(self) -> None:
        await super().close()
        await self.engine.dispose()


def create_engine_for_url(database_url: str) -> AsyncEngine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # In-memory SQLite only exists on one connection
            kwargs["poolclass"] = StaticPool
        return create_async_engine(database_url, echo=False, **kwargs)
    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=300,
    )


async def init_database(database_url: str) -> SqlTreeBackend:
    """Create the engine, make sure the table exists and return a ready backend."""
    engine = create_engine_for_url(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        await engine.dispose()
        raise StorageError(f"Could not initialize database: {e}", cause=e) from e
    logger.info("Tree store initialized")
    return SqlTreeBackend(engine)
