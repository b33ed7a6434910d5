"""
Typed CRUD over the library's record kinds.

Every method opens its own short transaction on the shared Database.
Records are ORM instances (Pack, Image, Tag, ImageTag, TagUsage, Setting);
keys are plain values, or (image_id, tag_id) tuples for ImageTag.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy import delete, func, inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .database import Base, Database, Image, ImageTag, Pack, Tag, TagUsage, get_database
from .errors import DuplicateKeyConflict, TransactionFailure, TransactionResult, is_duplicate_key

logger = logging.getLogger(__name__)

# Secondary indexes by record kind, addressed by name.
INDEXES: Dict[Type[Base], Dict[str, Any]] = {
    Pack: {'by-imported': Pack.imported_at},
    Image: {
        'by-pack': Image.pack_id,
        'by-library': Image.is_in_library,
        'by-added': Image.added_to_library_at,
    },
    Tag: {'by-parent': Tag.parent_id, 'by-name': Tag.name},
    ImageTag: {'by-image': ImageTag.image_id, 'by-tag': ImageTag.tag_id},
    TagUsage: {'by-last-used': TagUsage.last_used},
}

DATA_MODELS = (ImageTag, TagUsage, Image, Tag, Pack)


def primary_key(record: Base):
    """The record's key: a scalar, or a tuple for composite keys."""
    identity = inspect(type(record)).primary_key_from_instance(record)
    return identity[0] if len(identity) == 1 else tuple(identity)


def _key_clause(model: Type[Base], key):
    columns = inspect(model).primary_key
    values = key if isinstance(key, tuple) else (key,)
    if len(values) != len(columns):
        raise ValueError(f"{model.__name__} key needs {len(columns)} part(s), got {key!r}")
    return [column == value for column, value in zip(columns, values)]


def _fresh_copy(record: Base) -> Base:
    """A transient copy, so re-adding an already persisted object still INSERTs."""
    mapper = inspect(type(record))
    state = inspect(record)
    values = {
        attr.key: getattr(record, attr.key)
        for attr in mapper.column_attrs
        if attr.key in state.dict
    }
    return type(record)(**values)


def index_column(model: Type[Base], index: str):
    try:
        return INDEXES[model][index]
    except KeyError:
        raise ValueError(f"{model.__name__} has no index named {index!r}") from None


class EntityStore:
    def __init__(self, database: Optional[Database] = None):
        self.database = database or get_database()

    async def open(self) -> "EntityStore":
        """Idempotent: opens (and migrates) the database once, then returns immediately."""
        await self.database.open()
        return self

    def session_scope(self):
        return self.database.session_scope()

    # --- Writes ---

    async def add(self, record: Base) -> None:
        """Insert a new record. Raises DuplicateKeyConflict if the key is taken."""
        try:
            async with self.session_scope() as session:
                session.add(_fresh_copy(record))
                await session.flush()
        except IntegrityError as exc:
            if is_duplicate_key(exc):
                raise DuplicateKeyConflict(type(record).__name__, primary_key(record)) from exc
            raise

    async def update(self, record: Base) -> None:
        """Upsert by primary key."""
        async with self.session_scope() as session:
            await session.merge(record)

    async def update_batch(self, records: Iterable[Base]) -> None:
        async with self.session_scope() as session:
            for record in records:
                await session.merge(record)

    async def delete(self, model: Type[Base], key) -> None:
        """Remove by key. Deleting a missing key is a no-op."""
        async with self.session_scope() as session:
            await session.execute(delete(model).where(*_key_clause(model, key)))

    async def add_batch(self, records: List[Base]) -> TransactionResult:
        """
        Insert many records in one transaction with partial-success semantics.

        Each record gets its own SAVEPOINT: a duplicate key or any other
        per-record failure rolls back only that record. The caller always
        gets counts back, never an exception.
        """
        result = TransactionResult()
        if not records:
            return result

        logger.debug("add_batch: starting transaction for %d records", len(records))
        try:
            async with self.session_scope() as session:
                for record in records:
                    await self._add_one(session, record, result)
        except SQLAlchemyError as exc:
            logger.exception("add_batch: transaction failed")
            result.abort(exc)
            return result

        logger.info(
            "add_batch: success=%d failed=%d duplicates=%d",
            result.success, result.failed, result.duplicates,
        )
        return result

    async def _add_one(self, session, record: Base, result: TransactionResult) -> None:
        key = primary_key(record)
        if any(part is None for part in (key if isinstance(key, tuple) else (key,))):
            result.add_error(type(record).__name__, "missing primary key")
            logger.error("Error adding %s: missing primary key", type(record).__name__)
            return
        try:
            if await session.get(type(record), key) is not None:
                result.duplicates += 1
                logger.warning("Duplicate %s skipped: %s", type(record).__name__, key)
                return
            async with session.begin_nested():
                session.add(_fresh_copy(record))
        except IntegrityError as exc:
            if is_duplicate_key(exc):
                result.duplicates += 1
            else:
                result.add_error(key, exc.orig)
                logger.error("Error adding %s: %s", type(record).__name__, exc.orig)
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            result.add_error(key, exc)
            logger.error("Error adding %s: %s", type(record).__name__, exc)
        else:
            result.success += 1

    async def clear_all(self) -> None:
        """Empty every data table. Settings are kept."""
        try:
            async with self.session_scope() as session:
                for model in DATA_MODELS:
                    await session.execute(delete(model))
        except SQLAlchemyError as exc:
            logger.exception("clear_all: transaction failed")
            raise TransactionFailure("Could not clear the library") from exc
        logger.info("All library data cleared")

    # --- Reads ---

    async def get(self, model: Type[Base], key) -> Optional[Base]:
        """The record for `key`, or None when it does not exist."""
        async with self.session_scope() as session:
            return await session.get(model, key)

    async def get_many(self, model: Type[Base], keys: Iterable) -> List[Base]:
        """Records for the given scalar keys, in key order given; missing keys are skipped."""
        keys = list(keys)
        if not keys:
            return []
        pk = inspect(model).primary_key[0]
        async with self.session_scope() as session:
            rows = (await session.execute(select(model).where(pk.in_(keys)))).scalars().all()
        by_key = {primary_key(row): row for row in rows}
        return [by_key[k] for k in keys if k in by_key]

    async def get_all(self, model: Type[Base]) -> List[Base]:
        async with self.session_scope() as session:
            query = select(model).order_by(*inspect(model).primary_key)
            return list((await session.execute(query)).scalars().all())

    async def get_all_by_index(self, model: Type[Base], index: str, value) -> List[Base]:
        """All records whose indexed column equals `value` (None matches NULL)."""
        column = index_column(model, index)
        condition = column.is_(None) if value is None else column == value
        query = select(model).where(condition).order_by(column, *inspect(model).primary_key)
        async with self.session_scope() as session:
            return list((await session.execute(query)).scalars().all())

    async def count(self, model: Type[Base], index: Optional[str] = None, value=None) -> int:
        query = select(func.count()).select_from(model)
        if index is not None:
            column = index_column(model, index)
            query = query.where(column.is_(None) if value is None else column == value)
        async with self.session_scope() as session:
            return (await session.execute(query)).scalar_one()
