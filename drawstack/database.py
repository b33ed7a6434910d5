"""
SQLite persistence: ORM models, the versioned schema, and the shared connection.

Tables mirror the record kinds of the library (packs, images, tags, image_tags,
tag_usage, settings). No foreign keys are declared; references between tables
are resolved at read time and dangling rows are skipped there.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String, Text, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from . import DATABASE_URL, SCHEMA_VERSION
from .errors import ErrorCode, StoreError

logger = logging.getLogger(__name__)

Base = declarative_base()

# --- SQLAlchemy ORM Models ---

class Pack(Base):
    __tablename__ = 'packs'
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    source = Column(String, nullable=False, default='')
    image_count = Column(Integer, nullable=False, default=0)
    imported_at = Column(BigInteger, nullable=False)
    folder_path = Column(String, nullable=False, default='')
    __table_args__ = (Index('ix_packs_imported_at', 'imported_at'),)

    def __repr__(self) -> str:
        return f"<Pack {self.id} {self.name!r}>"


class Image(Base):
    __tablename__ = 'images'
    id = Column(String, primary_key=True)
    # NULL for images added straight to the library rather than through a pack.
    pack_id = Column(String, nullable=True)
    filename = Column(String, nullable=False)
    original_path = Column(String, nullable=False, default='')
    thumbnail_path = Column(String, nullable=False, default='')
    full_path = Column(String, nullable=False)
    is_in_library = Column(Boolean, nullable=False, default=False)
    added_to_library_at = Column(BigInteger, nullable=True)
    __table_args__ = (
        Index('ix_images_pack_id', 'pack_id'),
        Index('ix_images_is_in_library', 'is_in_library'),
    )

    def __repr__(self) -> str:
        return f"<Image {self.id} {self.filename!r}>"


# Added in schema version 3; declared apart so the migration can create it on its own.
images_added_index = Index('ix_images_added_to_library_at', Image.added_to_library_at)


class Tag(Base):
    __tablename__ = 'tags'
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    # Tags form a forest: a category is a tag without a parent.
    parent_id = Column(String, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    __table_args__ = (
        Index('ix_tags_parent_id', 'parent_id'),
        Index('ix_tags_name', 'name'),
    )

    def __repr__(self) -> str:
        return f"<Tag {self.id} {self.name!r}>"


class ImageTag(Base):
    __tablename__ = 'image_tags'
    image_id = Column(String, primary_key=True)
    tag_id = Column(String, primary_key=True)
    __table_args__ = (
        Index('ix_image_tags_image_id', 'image_id'),
        Index('ix_image_tags_tag_id', 'tag_id'),
    )


class TagUsage(Base):
    __tablename__ = 'tag_usage'
    tag_id = Column(String, primary_key=True)
    last_used = Column(BigInteger, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)
    __table_args__ = (Index('ix_tag_usage_last_used', 'last_used'),)


class Setting(Base):
    __tablename__ = 'settings'
    key = Column(String, primary_key=True)
    # JSON-encoded value
    value = Column(Text, nullable=False)


# --- Schema Migrations ---
# Each step creates only what is missing for its version. Steps run in order,
# inside one transaction, and the reached version is stored in PRAGMA user_version.

def _create_tables(conn, *models):
    for model in models:
        model.__table__.create(conn, checkfirst=True)

def _migrate_v1(conn):
    _create_tables(conn, Pack, Image, Tag, ImageTag)

def _migrate_v2(conn):
    _create_tables(conn, TagUsage)

def _migrate_v3(conn):
    images_added_index.create(conn, checkfirst=True)

def _migrate_v4(conn):
    _create_tables(conn, Setting)

MIGRATIONS = [
    (1, _migrate_v1),
    (2, _migrate_v2),
    (3, _migrate_v3),
    (4, _migrate_v4),
]


def read_schema_version(conn) -> int:
    return conn.exec_driver_sql("PRAGMA user_version").scalar() or 0


def run_migrations(conn) -> int:
    """Bring the schema up to SCHEMA_VERSION. Refuses to touch a newer database."""
    current = read_schema_version(conn)
    if current > SCHEMA_VERSION:
        raise StoreError(
            f"Database schema version {current} is newer than supported version {SCHEMA_VERSION}",
            code=ErrorCode.DB_SCHEMA_TOO_NEW,
        )
    for version, step in MIGRATIONS:
        if version <= current:
            continue
        logger.info("Database upgrade: %d -> %d", current, version)
        step(conn)
        conn.exec_driver_sql(f"PRAGMA user_version = {int(version)}")
        current = version
    return current


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    The sqlite driver opens transactions lazily and on its own terms, which
    breaks SAVEPOINT. Turn that off and emit BEGIN ourselves.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


# --- Shared Connection ---

class Database:
    """
    Lazily opened connection to one SQLite file.

    `open()` may be awaited by any number of callers at once: the first call
    starts a single opening task and everyone awaits that same task.
    """

    def __init__(self, url: str = DATABASE_URL):
        self.url = url
        self.engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker] = None
        self._opening: Optional[asyncio.Future] = None

    async def open(self) -> AsyncEngine:
        if self._opening is None:
            self._opening = asyncio.ensure_future(self._open())
        opening = self._opening
        try:
            return await asyncio.shield(opening)
        except Exception:
            # Let the next caller retry instead of replaying a failed open forever.
            if self._opening is opening and opening.done():
                self._opening = None
            raise

    async def _open(self) -> AsyncEngine:
        url = make_url(self.url)
        if url.database and url.database != ":memory:":
            directory = os.path.dirname(os.path.abspath(url.database))
            os.makedirs(directory, exist_ok=True)

        engine = create_async_engine(self.url)
        if url.get_backend_name() == "sqlite":
            _enable_sqlite_savepoints(engine)
        try:
            async with engine.begin() as conn:
                version = await conn.run_sync(run_migrations)
        except Exception:
            logger.exception("Could not open database at %s", self.url)
            await engine.dispose()
            raise

        self.engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        logger.info("Database ready at %s (schema version %d)", self.url, version)
        return engine

    @asynccontextmanager
    async def session_scope(self):
        """
        Yield a session inside one transaction: committed on success,
        rolled back if the block raises.
        """
        await self.open()
        session: AsyncSession = self._sessionmaker()
        try:
            async with session.begin():
                yield session
        finally:
            await session.close()

    async def schema_version(self) -> int:
        engine = await self.open()
        async with engine.connect() as conn:
            return await conn.run_sync(read_schema_version)

    async def close(self) -> None:
        """Dispose the engine. The default database is never closed in normal operation."""
        engine, self.engine, self._opening = self.engine, None, None
        self._sessionmaker = None
        if engine is not None:
            await engine.dispose()


_default_database: Optional[Database] = None


def get_database() -> Database:
    """The process-wide database for DATABASE_URL, created on first use."""
    global _default_database
    if _default_database is None:
        _default_database = Database(DATABASE_URL)
    return _default_database
