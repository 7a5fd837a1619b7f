"""
Record store client — document-style access to collections backed by SQL.

Every record is addressed by ``(collection, id)`` and exchanged as a plain
dict.  The store owns its sessions: each operation runs in its own
transaction, so a partial update is atomic.  Committed changes are published
on a :class:`ChangeFeed`, which is what live subscriptions listen to.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.database import Base
from app.models.patient import PatientRecord
from app.services.change_feed import ChangeFeed, Listener, Subscription

logger = logging.getLogger(__name__)

PATIENTS = "patients"

COLLECTIONS: dict[str, type[Base]] = {
    PATIENTS: PatientRecord,
}


class StoreError(Exception):
    """The store could not complete an operation."""


class DocumentNotFound(StoreError):
    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection}/{record_id} does not exist")
        self.collection = collection
        self.record_id = record_id


class InvalidField(StoreError):
    """A filter or update referenced a field the collection cannot accept."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. ``2025-01-31T09:15:02.123Z``."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_record_id() -> str:
    return uuid.uuid4().hex


def _record_to_dict(obj: Base) -> dict[str, Any]:
    return {column.key: getattr(obj, column.key) for column in obj.__table__.columns}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class RecordStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], feed: Optional[ChangeFeed] = None):
        self.session_factory = session_factory
        self.feed = feed or ChangeFeed()
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    def _model(self, collection: str) -> type[Base]:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise StoreError(f"Unknown collection: {collection}") from None

    def _column(self, model: type[Base], field: str):
        columns = model.__table__.columns
        if field not in columns:
            raise InvalidField(f"{model.__tablename__} has no field {field!r}")
        return columns[field]

    @contextlib.asynccontextmanager
    async def _lock(self, collection: str, record_id: str):
        # Held across commit + publish so watchers see changes in commit order.
        # Dropped once nobody holds or waits on it.
        key = (collection, record_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _fetch(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        model = self._model(collection)
        try:
            async with self.session_factory() as session:
                obj = await session.get(model, record_id)
                return _record_to_dict(obj) if obj is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {collection}/{record_id}") from exc

    # -- reads --------------------------------------------------------------

    async def get(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        """Return one record by id, or ``None``."""
        return await self._fetch(collection, record_id)

    async def query_by_fields(self, collection: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        """Return every record whose fields equal all of *filters*.

        The ``id`` key filters on the store-assigned identifier.
        """
        model = self._model(collection)
        query = select(model)
        for field, value in filters.items():
            query = query.where(self._column(model, field) == value)
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Query on {collection} failed") from exc
        logger.debug("Query on %s with %s matched %d record(s)", collection, sorted(filters), len(rows))
        return [_record_to_dict(row) for row in rows]

    # -- writes -------------------------------------------------------------

    async def add(
        self,
        collection: str,
        fields: dict[str, Any],
        record_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a record and return its snapshot.  An id is assigned when absent."""
        model = self._model(collection)
        for field in fields:
            if field == "id":
                raise InvalidField("id is assigned by the store")
            self._column(model, field)

        record_id = record_id or new_record_id()
        async with self._lock(collection, record_id):
            try:
                async with self.session_factory() as session:
                    if await session.get(model, record_id) is not None:
                        raise StoreError(f"{collection}/{record_id} already exists")
                    obj = model(id=record_id, **fields)
                    session.add(obj)
                    await session.flush()
                    snapshot = _record_to_dict(obj)
                    await session.commit()
            except SQLAlchemyError as exc:
                raise StoreError(f"Failed to create {collection}/{record_id}") from exc
            logger.info("Created %s/%s", collection, record_id)
            await self.feed.publish(collection, record_id, snapshot)
        return snapshot

    async def update_partial(self, collection: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Overwrite the given fields of one record atomically (last write wins).

        Raises :class:`DocumentNotFound` when the record is absent and
        :class:`InvalidField` for unknown fields or an attempt to change ``id``.
        """
        model = self._model(collection)
        for field in fields:
            if field == "id":
                raise InvalidField("id is immutable")
            self._column(model, field)

        async with self._lock(collection, record_id):
            try:
                async with self.session_factory() as session:
                    obj = await session.get(model, record_id)
                    if obj is None:
                        raise DocumentNotFound(collection, record_id)
                    for field, value in fields.items():
                        setattr(obj, field, value)
                    await session.flush()
                    snapshot = _record_to_dict(obj)
                    await session.commit()
            except SQLAlchemyError as exc:
                raise StoreError(f"Failed to update {collection}/{record_id}") from exc
            logger.info("Updated %s/%s: %s", collection, record_id, sorted(fields))
            await self.feed.publish(collection, record_id, snapshot)
        return snapshot

    # -- live -----------------------------------------------------------------

    async def subscribe(self, collection: str, record_id: str, on_change: Listener) -> Subscription:
        """Watch one record.

        *on_change* receives the current snapshot before this call returns and
        then every committed change, in commit order.  Raises
        :class:`DocumentNotFound` if the record does not exist.
        """
        self._model(collection)
        async with self._lock(collection, record_id):
            snapshot = await self._fetch(collection, record_id)
            if snapshot is None:
                raise DocumentNotFound(collection, record_id)
            subscription = self.feed.listen(collection, record_id, on_change)
            await self.feed.deliver(subscription, snapshot)
        return subscription


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_store: Optional[RecordStore] = None


def init_record_store(session_factory: async_sessionmaker[AsyncSession]) -> RecordStore:
    """Create the process-wide store.  Called once at application startup."""
    global _store
    _store = RecordStore(session_factory)
    return _store


def get_record_store() -> RecordStore:
    if _store is None:
        raise RuntimeError("Record store is not initialised")
    return _store


def close_record_store() -> None:
    global _store
    _store = None
