import asyncio
import bisect
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from .config import MAX_SESSIONS
from .errors import SessionNotFoundError
from .models import SessionMetadata
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

INDEX_KEY = "session_index"

DeleteBlobs = Callable[[str, int], Awaitable[None]]

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(ts: str) -> datetime:
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return _OLDEST
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _sort_key(meta: SessionMetadata) -> datetime:
    return parse_timestamp(meta.timestamp)


class SessionIndex:
    """Bounded catalog of archived sessions, newest first.

    The whole index is one blob in the store. Entries are held oldest-first in
    a list kept sorted by timestamp, so the entry to evict is always at the
    front. Blobs of removed sessions are deleted only after the shrunken index
    has been written: a crash in between leaves orphan blobs, never an index
    entry that points at missing chunks.
    """

    def __init__(self, store: KeyValueStore, delete_blobs: DeleteBlobs,
                 max_sessions: int = MAX_SESSIONS, key: str = INDEX_KEY):
        self.store = store
        self.delete_blobs = delete_blobs
        self.max_sessions = max_sessions
        self.key = key
        self._lock = asyncio.Lock()

    async def _read(self) -> List[SessionMetadata]:
        data = await self.store.get([self.key])
        rows = data.get(self.key) or []
        if not isinstance(rows, list):
            logger.warning("Session index blob is unreadable; treating it as empty")
            rows = []
        entries: List[SessionMetadata] = []
        for row in rows:
            try:
                entries.append(SessionMetadata.from_dict(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Dropping unreadable index entry %r: %s", row, e)
        # Stored newest-first; reverse keeps arrival order among equal timestamps
        entries.reverse()
        entries.sort(key=_sort_key)
        return entries

    async def _write(self, ascending: List[SessionMetadata]) -> None:
        await self.store.set({self.key: [m.to_dict() for m in reversed(ascending)]})

    async def list(self) -> List[SessionMetadata]:
        return list(reversed(await self._read()))

    async def get(self, session_id: str) -> SessionMetadata:
        for meta in await self._read():
            if meta.id == session_id:
                return meta
        raise SessionNotFoundError(session_id)

    async def count(self) -> int:
        return len(await self._read())

    async def insert(self, metadata: SessionMetadata) -> List[SessionMetadata]:
        """Add a session; returns whatever was evicted to stay within bounds."""
        async with self._lock:
            entries = await self._read()
            bisect.insort(entries, metadata, key=_sort_key)
            evicted: List[SessionMetadata] = []
            while len(entries) > self.max_sessions:
                evicted.append(entries.pop(0))
            await self._write(entries)
            for old in evicted:
                logger.info("Evicting session %s (%s) to keep %d sessions", old.id, old.title, self.max_sessions)
                await self.delete_blobs(old.id, old.chunk_count)
            return evicted

    async def remove(self, session_id: str) -> SessionMetadata:
        async with self._lock:
            entries = await self._read()
            match: Optional[SessionMetadata] = next((m for m in entries if m.id == session_id), None)
            if match is None:
                raise SessionNotFoundError(session_id)
            entries.remove(match)
            await self._write(entries)
            await self.delete_blobs(match.id, match.chunk_count)
            return match

    async def clear(self) -> int:
        async with self._lock:
            entries = await self._read()
            await self._write([])
            for meta in entries:
                await self.delete_blobs(meta.id, meta.chunk_count)
            return len(entries)
