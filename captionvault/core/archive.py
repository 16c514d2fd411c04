import logging
from typing import List, Optional, Sequence, Tuple

from .chunker import chunk_transcript
from .config import CHUNK_SIZE, MAX_CHUNK_BYTES, MAX_SESSIONS
from .errors import ArchiveCorruptError, StoreWriteError
from .index import SessionIndex
from .models import AttendeeReport, TranscriptEntry
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


def chunk_key(session_id: str, i: int) -> str:
    return f"{session_id}_chunk_{i}"


def attendees_key(session_id: str) -> str:
    return f"{session_id}_attendees"


def session_keys(session_id: str, chunk_count: int) -> List[str]:
    return [chunk_key(session_id, i) for i in range(chunk_count)] + [attendees_key(session_id)]


class ChunkedArchiveStore:
    """Stores one session as ``chunk_count`` transcript blobs plus an attendee blob."""

    def __init__(self, store: KeyValueStore, chunk_size: int = CHUNK_SIZE,
                 max_chunk_bytes: int = MAX_CHUNK_BYTES, max_sessions: int = MAX_SESSIONS):
        self.store = store
        self.chunk_size = chunk_size
        self.max_chunk_bytes = max_chunk_bytes
        self.index = SessionIndex(store, self.delete, max_sessions=max_sessions)

    async def save(self, session_id: str, transcript: Sequence[TranscriptEntry],
                   attendee_report: Optional[AttendeeReport] = None) -> int:
        chunks = chunk_transcript(transcript, self.chunk_size, self.max_chunk_bytes)
        written: List[str] = []
        try:
            for i, chunk in enumerate(chunks):
                key = chunk_key(session_id, i)
                await self.store.set({key: [e.to_dict() for e in chunk]})
                written.append(key)
            if attendee_report is not None:
                key = attendees_key(session_id)
                await self.store.set({key: attendee_report.to_dict()})
                written.append(key)
        except StoreWriteError:
            logger.error("Write failed for session %s after %d blob(s); rolling back", session_id, len(written))
            await self._discard(written)
            raise
        logger.debug("Saved session %s: %d entries in %d chunk(s)", session_id, len(transcript), len(chunks))
        return len(chunks)

    async def _discard(self, keys: List[str]) -> None:
        if not keys:
            return
        try:
            await self.store.remove(keys)
        except Exception as e:
            # Orphans are tolerated; the caller still gets the write error
            logger.warning("Could not remove %d partial blob(s): %s", len(keys), e)

    async def load(self, session_id: str, chunk_count: int) -> Tuple[List[TranscriptEntry], Optional[AttendeeReport]]:
        keys = session_keys(session_id, chunk_count)
        data = await self.store.get(keys)
        transcript: List[TranscriptEntry] = []
        for i in range(chunk_count):
            key = chunk_key(session_id, i)
            if key not in data:
                raise ArchiveCorruptError(session_id, f"missing chunk {i} of {chunk_count}")
            rows = data[key]
            if not isinstance(rows, list):
                raise ArchiveCorruptError(session_id, f"chunk {i} is not a list")
            try:
                transcript.extend(TranscriptEntry.from_dict(r) for r in rows)
            except (KeyError, TypeError) as e:
                raise ArchiveCorruptError(session_id, f"chunk {i} has a malformed entry: {e}")

        report = None
        raw = data.get(attendees_key(session_id))
        if raw is not None:
            if not isinstance(raw, dict):
                raise ArchiveCorruptError(session_id, "attendee report is not an object")
            try:
                report = AttendeeReport.from_dict(raw)
            except (TypeError, ValueError) as e:
                raise ArchiveCorruptError(session_id, f"attendee report is malformed: {e}")
        return transcript, report

    async def delete(self, session_id: str, chunk_count: int) -> None:
        await self.store.remove(session_keys(session_id, chunk_count))
        logger.debug("Deleted %d chunk(s) and attendee blob of %s", chunk_count, session_id)
