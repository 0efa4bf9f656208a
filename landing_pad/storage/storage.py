"""SQLite document storage implementation."""

import asyncio
import json
import sqlite3
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..errors import TransientError
from ..logging_config import get_logger

logger = get_logger(__name__)

ID_FIELD = "_id"


class IStorage(Protocol):
    """Document storage collaborator. Ids are opaque strings."""

    async def init(self) -> None:
        """Open the database and create tables."""
        ...

    async def close(self) -> None:
        """Close the database connection."""
        ...

    async def ping(self) -> bool:
        """Reachability check."""
        ...

    async def store(self, collection: str, doc: dict) -> str:
        """Insert a document, returning its id."""
        ...

    async def update(self, collection: str, filter: dict, patch: dict) -> dict | None:
        """Patch the first matching document; return it, or None when nothing matched."""
        ...

    async def find(
        self,
        collection: str,
        filter: dict | None = None,
        *,
        sort: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        """Find documents by top-level equality filter."""
        ...

    async def find_one(self, collection: str, filter: dict) -> dict | None:
        """Find a single document."""
        ...

    async def delete(self, collection: str, filter: dict) -> int:
        """Delete matching documents, returning the count."""
        ...

    def transaction(self):
        """Async context manager grouping writes into one transaction."""
        ...

    async def increment(self, counter: str, by: int = 1) -> int:
        """Increment a named counter, returning the new value."""
        ...

    async def clear(self) -> None:
        """Clear all data."""
        ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sql_value(value: Any) -> Any:
    # json_extract returns SQLite scalars; booleans come back as integers
    if isinstance(value, bool):
        return int(value)
    return value


class Storage:
    """SQLite document storage implementation.

    All writes share one connection. Each write, and each transaction as a
    whole, holds ``_lock`` until it is committed or rolled back, so a
    rollback only ever discards its own writes.
    """

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize database and create tables."""
        try:
            self._conn = await aiosqlite.connect(self._db_path)
        except (sqlite3.OperationalError, OSError) as e:
            raise TransientError(f"Cannot open storage at {self._db_path}: {e}") from e

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()
        logger.info("Storage initialized at %s", self._db_path)

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def ping(self) -> bool:
        if not self._conn:
            return False
        try:
            cursor = await self._conn.execute("SELECT 1")
            await cursor.fetchone()
            return True
        except sqlite3.Error:
            return False

    def _connection(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    @staticmethod
    def _where(collection: str, filter: dict | None) -> tuple[str, list[Any]]:
        conditions = ["collection = ?"]
        params: list[Any] = [collection]
        for key, value in (filter or {}).items():
            if key == ID_FIELD:
                conditions.append("id = ?")
                params.append(str(value))
            elif value is None:
                conditions.append("json_extract(data, ?) IS NULL")
                params.append(f"$.{key}")
            else:
                conditions.append("json_extract(data, ?) = ?")
                params.extend([f"$.{key}", _sql_value(value)])
        return " AND ".join(conditions), params

    async def _execute(self, sql: str, params: list[Any] | tuple = ()) -> aiosqlite.Cursor:
        try:
            return await self._connection().execute(sql, params)
        except sqlite3.OperationalError as e:
            # Locked / busy databases are worth retrying
            raise TransientError(f"Storage operation failed: {e}") from e

    # Uncommitted writes; callers hold _lock

    async def _insert(self, collection: str, doc: dict) -> str:
        doc_id = str(doc.get(ID_FIELD) or uuid.uuid4().hex)
        data = {**doc, ID_FIELD: doc_id}
        now = _now()
        await self._execute(
            """
            INSERT INTO documents (collection, id, data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (collection, doc_id, json.dumps(data, default=str), now, now),
        )
        return doc_id

    async def _patch(self, collection: str, filter: dict, patch: dict) -> dict | None:
        doc = await self.find_one(collection, filter)
        if doc is None:
            return None

        updated = {**doc, **patch, ID_FIELD: doc[ID_FIELD]}
        await self._execute(
            """
            UPDATE documents SET data = ?, updated_at = ?
            WHERE collection = ? AND id = ?
            """,
            (json.dumps(updated, default=str), _now(), collection, doc[ID_FIELD]),
        )
        return updated

    async def _remove(self, collection: str, filter: dict) -> int:
        where, params = self._where(collection, filter)
        cursor = await self._execute(f"DELETE FROM documents WHERE {where}", params)
        return cursor.rowcount

    async def _increment(self, counter: str, by: int) -> int:
        await self._execute(
            """
            INSERT INTO counters (name, value) VALUES (?, ?)
            ON CONFLICT(name) DO UPDATE SET value = value + excluded.value
            """,
            (counter, by),
        )
        cursor = await self._execute("SELECT value FROM counters WHERE name = ?", (counter,))
        row = await cursor.fetchone()
        return row[0]

    async def _committed(self, write, *args):
        async with self._lock:
            try:
                result = await write(*args)
            except BaseException:
                await self._connection().rollback()
                raise
            await self._connection().commit()
            return result

    async def store(self, collection: str, doc: dict) -> str:
        """Insert a document, returning its id."""
        return await self._committed(self._insert, collection, doc)

    async def update(self, collection: str, filter: dict, patch: dict) -> dict | None:
        """Patch the first matching document; return it, or None when nothing matched."""
        # Read-modify-write under the lock so concurrent patches do not interleave
        return await self._committed(self._patch, collection, filter, patch)

    async def find(
        self,
        collection: str,
        filter: dict | None = None,
        *,
        sort: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        """Find documents by top-level equality filter."""
        where, params = self._where(collection, filter)
        direction = "DESC" if descending else "ASC"
        if sort:
            order = f"ORDER BY json_extract(data, ?) {direction}, rowid {direction}"
            params.append(f"$.{sort}")
        else:
            order = f"ORDER BY created_at {direction}, rowid {direction}"

        query = f"SELECT data FROM documents WHERE {where} {order}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._execute(query, params)
        rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    async def find_one(self, collection: str, filter: dict) -> dict | None:
        """Find a single document."""
        docs = await self.find(collection, filter, limit=1)
        return docs[0] if docs else None

    async def delete(self, collection: str, filter: dict) -> int:
        """Delete matching documents, returning the count."""
        return await self._committed(self._remove, collection, filter)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["StorageTransaction"]:
        """Group writes into one transaction.

        Write through the yielded handle only: writes on the storage itself
        wait until the transaction has finished.
        """
        async with self._lock:
            conn = self._connection()
            try:
                yield StorageTransaction(self)
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def increment(self, counter: str, by: int = 1) -> int:
        """Increment a named counter, returning the new value."""
        return await self._committed(self._increment, counter, by)

    async def clear(self) -> None:
        """Clear all data."""
        async with self._lock:
            for table in ["documents", "counters"]:
                await self._execute(f"DELETE FROM {table}")
            await self._connection().commit()


class StorageTransaction:
    """Write handle for an open transaction; nothing is committed until it ends."""

    def __init__(self, storage: Storage):
        self._storage = storage

    async def store(self, collection: str, doc: dict) -> str:
        return await self._storage._insert(collection, doc)

    async def update(self, collection: str, filter: dict, patch: dict) -> dict | None:
        return await self._storage._patch(collection, filter, patch)

    async def delete(self, collection: str, filter: dict) -> int:
        return await self._storage._remove(collection, filter)

    async def increment(self, counter: str, by: int = 1) -> int:
        return await self._storage._increment(counter, by)

    async def find(self, collection: str, filter: dict | None = None, **kwargs) -> list[dict]:
        return await self._storage.find(collection, filter, **kwargs)

    async def find_one(self, collection: str, filter: dict) -> dict | None:
        return await self._storage.find_one(collection, filter)
