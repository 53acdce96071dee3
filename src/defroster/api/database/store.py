"""
Record Store Adapter

One interface over the backing store of a tier. A store holds the four
collections (events, subscriptions, notifications, watermarks) and offers exactly
the operations the engine needs: insert, point lookup, inclusive range scan on an
indexed field, bounded delete-by-upper-bound and upsert.

Two implementations conform to the same protocol:

- SqlRecordStore: SQLAlchemy async ORM, sqlite+aiosqlite by default
- MemoryRecordStore: in-process document store, the shape of an offline cache

Records are decoded through the entity `from_document` codecs. A stored record
that fails validation is logged and treated as absent.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any, Protocol

import deal
from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from defroster.api.core.enums import Collection, StoreTier
from defroster.api.core.exceptions import InvalidArgumentError, MalformedRecordError, StoreError, StoreUnavailableError
from defroster.api.core.types import Event, NotificationRecord, Subscription, SyncWatermark
from defroster.api.database.models import MODELS, Base


logger = logging.getLogger(__name__)


__all__ = [
    "RECORD_TYPES",
    "SCANNABLE_FIELDS",
    "MemoryRecordStore",
    "Record",
    "RecordStore",
    "SqlRecordStore",
    "record_key",
]


Record = Event | Subscription | NotificationRecord | SyncWatermark

RECORD_TYPES: dict[Collection, type[Event] | type[Subscription] | type[NotificationRecord] | type[SyncWatermark]] = {
    Collection.EVENTS: Event,
    Collection.SUBSCRIPTIONS: Subscription,
    Collection.NOTIFICATIONS: NotificationRecord,
    Collection.WATERMARKS: SyncWatermark,
}

# Fields each collection can be range scanned, deleted or max-merged on
SCANNABLE_FIELDS: dict[Collection, tuple[str, ...]] = {
    Collection.EVENTS: ("cell_code", "created_at", "expires_at"),
    Collection.SUBSCRIPTIONS: ("cell_code", "updated_at"),
    Collection.NOTIFICATIONS: ("expires_at", "sent_at"),
    Collection.WATERMARKS: ("last_fetched_at",),
}

# Driver failures that mean the store cannot be reached right now
_UNAVAILABLE_ERRORS = (DBAPIError, OSError)


def record_key(collection: Collection, record: Record) -> str | None:
    """Natural key of a record within its collection (None for an unsaved event)."""
    if collection is Collection.EVENTS:
        return record.id  # type: ignore[union-attr]
    if collection is Collection.SUBSCRIPTIONS:
        return record.device_id  # type: ignore[union-attr]
    if collection is Collection.NOTIFICATIONS:
        return record.key  # type: ignore[union-attr]
    return record.cell_key  # type: ignore[union-attr]


def _require_record(collection: Collection, record: Record) -> None:
    expected = RECORD_TYPES[collection]
    if not isinstance(record, expected):
        raise InvalidArgumentError(f"{collection} holds {expected.__name__} records, got {type(record).__name__}")


def _require_field(collection: Collection, field: str) -> None:
    if field not in SCANNABLE_FIELDS[collection]:
        raise InvalidArgumentError(f"{collection} cannot be scanned on '{field}'")


def _keyed(collection: Collection, key: str, record: Record) -> Record:
    """Return the record carrying `key`, assigning it to an unsaved event."""
    _require_record(collection, record)
    if collection is Collection.EVENTS and record.id is None:  # type: ignore[union-attr]
        return record.with_id(key)  # type: ignore[union-attr]
    if record_key(collection, record) != key:
        raise InvalidArgumentError(f"Key '{key}' does not match record key '{record_key(collection, record)}'")
    return record


def _decode(collection: Collection, document: Any, source: str) -> Record | None:
    try:
        return RECORD_TYPES[collection].from_document(document)
    except MalformedRecordError as e:
        logger.warning(f"Skipping malformed {collection} record in {source}: {e}")
        return None


class RecordStore(Protocol):
    """Operations every store tier provides."""

    tier: StoreTier

    async def insert(self, collection: Collection, record: Record) -> str:
        """Write a new record and return its key. Unsaved events get a fresh id."""
        ...

    async def get(self, collection: Collection, key: str) -> Record | None: ...

    def range_scan(self, collection: Collection, field: str, start: Any, end: Any) -> AsyncIterator[Record]:
        """Yield records with start <= field <= end, ordered by field."""
        ...

    async def delete_where(self, collection: Collection, field: str, upper_bound: Any, limit: int | None = None) -> int:
        """Delete up to `limit` records with field <= upper_bound; return the count."""
        ...

    async def upsert(self, collection: Collection, key: str, record: Record, keep_max: str | None = None) -> None:
        """Create or overwrite. With keep_max, that field's stored value never decreases."""
        ...

    async def close(self) -> None: ...


class SqlRecordStore:
    """
    Record store backed by a SQL database through SQLAlchemy's async ORM.

    Driver and connection errors surface as StoreUnavailableError.
    """

    def __init__(self, url: str, tier: StoreTier = StoreTier.SERVER, echo: bool = False):
        """
        Initialize database connection.

        Args:
            url: Async database URL, e.g. sqlite+aiosqlite:///path/to/server.db
            tier: Tier this store serves (used in logs)
            echo: Log emitted SQL
        """
        self.url = url
        self.tier = tier
        self._engine = create_async_engine(url, echo=echo, future=True)
        self._AsyncSession = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def __repr__(self) -> str:
        return f"<SqlRecordStore(tier={self.tier}, url={self._engine.url!r})>"

    @deal.post(lambda result: result is None, message="Schema initialization must complete")
    async def init_schema(self) -> None:
        """
        Create any missing tables and indexes.

        Managed databases should use the Alembic migrations instead.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Cannot initialize {self.tier} store schema: {e}") from e
        logger.debug(f"Initialized {self.tier} store schema")

    @deal.post(lambda result: result is None, message="Close must complete")
    async def close(self) -> None:
        """Close database connection."""
        await self._engine.dispose()

    async def insert(self, collection: Collection, record: Record) -> str:
        _require_record(collection, record)
        key = record_key(collection, record) or uuid.uuid4().hex
        record = _keyed(collection, key, record)
        model = MODELS[collection].from_document(record.to_document())
        try:
            async with self._AsyncSession() as session, session.begin():
                await session.merge(model)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Insert into {self.tier}/{collection} failed: {e}") from e
        return key

    async def get(self, collection: Collection, key: str) -> Record | None:
        try:
            async with self._AsyncSession() as session:
                row = await session.get(MODELS[collection], key)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Lookup in {self.tier}/{collection} failed: {e}") from e
        if row is None:
            return None
        return _decode(collection, row.to_document(), f"{self.tier} store")

    async def range_scan(self, collection: Collection, field: str, start: Any, end: Any) -> AsyncIterator[Record]:
        _require_field(collection, field)
        model = MODELS[collection]
        column = getattr(model, field)
        stmt = select(model).where(column >= start, column <= end).order_by(column)
        try:
            async with self._AsyncSession() as session:
                rows = await session.stream_scalars(stmt)
                async for row in rows:
                    record = _decode(collection, row.to_document(), f"{self.tier} store")
                    if record is not None:
                        yield record
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Range scan of {self.tier}/{collection}.{field} failed: {e}") from e

    @deal.pre(
        lambda self, collection, field, upper_bound, limit=None: limit is None or limit > 0,
        message="Delete limit must be positive",
    )  # type: ignore[misc,arg-type]
    async def delete_where(self, collection: Collection, field: str, upper_bound: Any, limit: int | None = None) -> int:
        _require_field(collection, field)
        model = MODELS[collection]
        column = getattr(model, field)
        primary_key = model.__mapper__.primary_key[0]
        try:
            async with self._AsyncSession() as session, session.begin():
                if limit is None:
                    result = await session.execute(delete(model).where(column <= upper_bound))
                    return int(result.rowcount or 0)
                victims = select(primary_key).where(column <= upper_bound).order_by(column).limit(limit)
                keys = list((await session.scalars(victims)).all())
                if not keys:
                    return 0
                result = await session.execute(delete(model).where(primary_key.in_(keys)))
                return int(result.rowcount or 0)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Delete from {self.tier}/{collection} failed: {e}") from e

    async def upsert(self, collection: Collection, key: str, record: Record, keep_max: str | None = None) -> None:
        record = _keyed(collection, key, record)
        model = MODELS[collection].from_document(record.to_document())
        if keep_max is not None:
            _require_field(collection, keep_max)
        try:
            async with self._AsyncSession() as session, session.begin():
                if keep_max is None:
                    await session.merge(model)
                else:
                    await session.execute(self._keep_max_statement(model, keep_max))
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Upsert into {self.tier}/{collection} failed: {e}") from e

    def _keep_max_statement(self, model: Any, keep_max: str) -> Any:
        """INSERT ... ON CONFLICT DO UPDATE that never lowers `keep_max`."""
        table = model.__table__
        values = {column.name: getattr(model, column.name) for column in table.columns}
        dialect = self._engine.dialect.name
        if dialect == "sqlite":
            stmt = sqlite.insert(table).values(**values)
            larger = func.max(table.c[keep_max], stmt.excluded[keep_max])
        elif dialect == "postgresql":
            stmt = postgresql.insert(table).values(**values)
            larger = func.greatest(table.c[keep_max], stmt.excluded[keep_max])
        else:
            raise StoreError(f"keep_max upserts are not supported on {dialect}")

        primary_keys = [column.name for column in table.primary_key.columns]
        updates = {name: stmt.excluded[name] for name in values if name not in primary_keys}
        updates[keep_max] = larger
        return stmt.on_conflict_do_update(index_elements=primary_keys, set_=updates)


class MemoryRecordStore:
    """
    In-process document store.

    Documents are kept as plain dicts and decoded on every read, the way a
    browser-side cache hands back stored JSON. No operation awaits between
    reading and writing a document, so each call is atomic on the event loop.
    """

    def __init__(
        self,
        tier: StoreTier = StoreTier.CLIENT,
        documents: dict[Collection, dict[str, Any]] | None = None,
    ):
        """
        Args:
            tier: Tier this store serves (used in logs)
            documents: Previously persisted documents per collection, keyed by record key
        """
        self.tier = tier
        self._documents: dict[Collection, dict[str, Any]] = {collection: {} for collection in Collection}
        for collection, entries in (documents or {}).items():
            self._documents[Collection(collection)].update(entries)

    def __repr__(self) -> str:
        counts = ", ".join(f"{collection}={len(entries)}" for collection, entries in self._documents.items())
        return f"<MemoryRecordStore(tier={self.tier}, {counts})>"

    async def close(self) -> None:
        return None

    async def insert(self, collection: Collection, record: Record) -> str:
        _require_record(collection, record)
        key = record_key(collection, record) or uuid.uuid4().hex
        record = _keyed(collection, key, record)
        self._documents[collection][key] = record.to_document()
        return key

    async def get(self, collection: Collection, key: str) -> Record | None:
        document = self._documents[collection].get(key)
        if document is None:
            return None
        return _decode(collection, document, f"{self.tier} store")

    async def range_scan(self, collection: Collection, field: str, start: Any, end: Any) -> AsyncIterator[Record]:
        _require_field(collection, field)
        matches = [
            (document[field], key)
            for key, document in self._documents[collection].items()
            if _in_range(document, field, start, end)
        ]
        matches.sort()
        for _, key in matches:
            document = self._documents[collection].get(key)
            if document is None:
                continue  # deleted while iterating
            record = _decode(collection, document, f"{self.tier} store")
            if record is not None:
                yield record

    @deal.pre(
        lambda self, collection, field, upper_bound, limit=None: limit is None or limit > 0,
        message="Delete limit must be positive",
    )  # type: ignore[misc,arg-type]
    async def delete_where(self, collection: Collection, field: str, upper_bound: Any, limit: int | None = None) -> int:
        _require_field(collection, field)
        entries = self._documents[collection]
        victims = sorted(
            (document[field], key) for key, document in entries.items() if _at_most(document, field, upper_bound)
        )
        if limit is not None:
            victims = victims[:limit]
        for _, key in victims:
            del entries[key]
        return len(victims)

    async def upsert(self, collection: Collection, key: str, record: Record, keep_max: str | None = None) -> None:
        record = _keyed(collection, key, record)
        document = record.to_document()
        if keep_max is not None:
            _require_field(collection, keep_max)
            existing = self._documents[collection].get(key)
            if isinstance(existing, dict) and _comparable(existing.get(keep_max), document[keep_max]):
                document[keep_max] = max(existing[keep_max], document[keep_max])
        self._documents[collection][key] = document


def _comparable(stored: Any, value: Any) -> bool:
    if isinstance(stored, bool) or stored is None:
        return False
    return isinstance(stored, type(value)) or (isinstance(stored, int | float) and isinstance(value, int | float))


def _in_range(document: Any, field: str, start: Any, end: Any) -> bool:
    if not isinstance(document, dict) or not _comparable(document.get(field), start):
        return False
    return bool(start <= document[field] <= end)


def _at_most(document: Any, field: str, upper_bound: Any) -> bool:
    if not isinstance(document, dict) or not _comparable(document.get(field), upper_bound):
        return False
    return bool(document[field] <= upper_bound)
