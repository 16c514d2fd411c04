import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .config import STORE_PATH, MAX_ITEM_BYTES, QUOTA_BYTES
from .errors import ArchiveError, StoreWriteError

logger = logging.getLogger(__name__)

DDL = [
    '''CREATE TABLE IF NOT EXISTS kv(
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )'''
]


class KeyValueStore(Protocol):
    """Async key-value store holding JSON-serialisable values."""

    quota_bytes: int

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]: ...

    async def set(self, items: Dict[str, Any]) -> None: ...

    async def remove(self, keys: Iterable[str]) -> None: ...

    async def bytes_in_use(self) -> int: ...


def _item_size(key: str, encoded: str) -> int:
    return len(key.encode("utf-8")) + len(encoded.encode("utf-8"))


def _encode_items(items: Dict[str, Any], max_item_bytes: int) -> Dict[str, str]:
    encoded = {}
    for key, value in items.items():
        try:
            blob = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StoreWriteError(f"Value for {key} is not serialisable: {e}")
        if max_item_bytes and _item_size(key, blob) > max_item_bytes:
            raise StoreWriteError(
                f"Value for {key} is {_item_size(key, blob)} bytes, over the {max_item_bytes} byte item limit")
        encoded[key] = blob
    return encoded


class MemoryStore:
    """Dict-backed store with the same limits as the persistent one."""

    def __init__(self, max_item_bytes: int = MAX_ITEM_BYTES, quota_bytes: int = QUOTA_BYTES):
        self.max_item_bytes = max_item_bytes
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def keys(self) -> List[str]:
        return sorted(self._data)

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {k: json.loads(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: Dict[str, Any]) -> None:
        encoded = _encode_items(items, self.max_item_bytes)
        used = sum(_item_size(k, v) for k, v in self._data.items() if k not in encoded)
        needed = used + sum(_item_size(k, v) for k, v in encoded.items())
        if self.quota_bytes and needed > self.quota_bytes:
            raise StoreWriteError(f"Quota exceeded: {needed} > {self.quota_bytes} bytes")
        self._data.update(encoded)

    async def remove(self, keys: Iterable[str]) -> None:
        for k in keys:
            self._data.pop(k, None)

    async def bytes_in_use(self) -> int:
        return sum(_item_size(k, v) for k, v in self._data.items())


@dataclass(frozen=True)
class Undecodable:
    """Stored text under a key that is not valid JSON."""
    raw: str


@contextmanager
def _store_errors(message: str, error=StoreWriteError):
    try:
        yield
    except (sqlite3.Error, OSError) as e:
        raise error(f"{message}: {e}") from e


class SqliteStore:
    """Persistent store: one row per key in a single SQLite table."""

    def __init__(self, db_path: str = STORE_PATH, max_item_bytes: int = MAX_ITEM_BYTES,
                 quota_bytes: int = QUOTA_BYTES):
        self.db_path = db_path
        self.max_item_bytes = max_item_bytes
        self.quota_bytes = quota_bytes
        self._initialised = False

    def connect(self):
        db_path = Path(self.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(str(db_path))

    def init_db(self):
        with _store_errors(f"Cannot open store at {self.db_path}"):
            con = self.connect()
            try:
                cur = con.cursor()
                for stmt in DDL:
                    cur.execute(stmt)
                con.commit()
            finally:
                con.close()
        self._initialised = True

    def _ensure(self):
        if not self._initialised:
            self.init_db()

    def _get_sync(self, keys: List[str]) -> Dict[str, Any]:
        self._ensure()
        if not keys:
            return {}
        with _store_errors(f"Failed to read {len(keys)} key(s)", ArchiveError):
            con = self.connect()
            try:
                marks = ",".join("?" for _ in keys)
                rows = con.execute(f"SELECT key, value FROM kv WHERE key IN ({marks})", keys).fetchall()
            finally:
                con.close()
        out = {}
        for key, value in rows:
            try:
                out[key] = json.loads(value)
            except json.JSONDecodeError:
                # Present but unparseable; readers report it as corrupt
                logger.warning("Undecodable value stored under %s", key)
                out[key] = Undecodable(value)
        return out

    def _set_sync(self, items: Dict[str, Any]) -> None:
        self._ensure()
        encoded = _encode_items(items, self.max_item_bytes)
        with _store_errors(f"Failed to write {len(encoded)} key(s)"):
            con = self.connect()
            try:
                if self.quota_bytes:
                    keys = list(encoded)
                    marks = ",".join("?" for _ in keys)
                    used = con.execute(
                        f"SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) "
                        f"FROM kv WHERE key NOT IN ({marks})", keys).fetchone()[0]
                    needed = used + sum(_item_size(k, v) for k, v in encoded.items())
                    if needed > self.quota_bytes:
                        raise StoreWriteError(f"Quota exceeded: {needed} > {self.quota_bytes} bytes")
                con.executemany(
                    "INSERT OR REPLACE INTO kv(key, value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP)",
                    list(encoded.items()))
                con.commit()
            finally:
                con.close()

    def _remove_sync(self, keys: List[str]) -> None:
        self._ensure()
        with _store_errors(f"Failed to remove {len(keys)} key(s)"):
            con = self.connect()
            try:
                con.executemany("DELETE FROM kv WHERE key=?", [(k,) for k in keys])
                con.commit()
            finally:
                con.close()

    def _bytes_in_use_sync(self) -> int:
        self._ensure()
        with _store_errors("Failed to measure store usage", ArchiveError):
            con = self.connect()
            try:
                row = con.execute(
                    "SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) FROM kv"
                ).fetchone()
                return int(row[0])
            finally:
                con.close()

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, list(keys))

    async def set(self, items: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._set_sync, dict(items))

    async def remove(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._remove_sync, list(keys))

    async def bytes_in_use(self) -> int:
        return await asyncio.to_thread(self._bytes_in_use_sync)


def open_store(db_path: Optional[str] = None) -> SqliteStore:
    store = SqliteStore(db_path or STORE_PATH)
    store.init_db()
    return store
