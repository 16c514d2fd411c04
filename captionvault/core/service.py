import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import config
from .aliases import apply_to_attendee_report, apply_to_transcript, normalize_aliases
from .archive import ChunkedArchiveStore
from .filenames import generate_filename, resolve_save_preferences
from .formats import render
from .guard import AutoSaveGuard, auto_save_key
from .models import AttendeeReport, SessionMetadata, StorageStats, TranscriptEntry
from .sinks import ExportSink, Viewer
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

MAX_SPEAKERS = 10
MAX_ATTENDEES = 20
PREVIEW_ENTRIES = 3
PREVIEW_CHARS = 50
SECONDS_PER_CAPTION = 3

_CLOCK_FORMATS = ("%H:%M:%S", "%H:%M", "%I:%M:%S %p", "%I:%M %p")


@dataclass
class ExportResult:
    filename: str
    location: str
    mime_type: str
    format: str


@dataclass
class SessionView:
    metadata: SessionMetadata
    transcript: List[TranscriptEntry]
    attendee_report: Optional[AttendeeReport]


@dataclass
class AutoSaveOutcome:
    status: str  # saved | noop | skipped | failed
    export: Optional[ExportResult] = None
    error: Optional[str] = None


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def _parse_caption_time(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _CLOCK_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None


def _estimate_duration(transcript: Sequence[TranscriptEntry]) -> str:
    estimated = round(len(transcript) * SECONDS_PER_CAPTION / 60)
    return f"~{estimated} min"


def calculate_duration(transcript: Sequence[TranscriptEntry]) -> str:
    if not transcript:
        return "0 min"
    first = _parse_caption_time(transcript[0].time)
    last = _parse_caption_time(transcript[-1].time)
    if first is None or last is None or (first.tzinfo is None) != (last.tzinfo is None):
        return _estimate_duration(transcript)
    gap = last - first
    if gap < timedelta(0):
        # Clock-only times carry no date; a backwards gap means the meeting ran past midnight
        if first.year == last.year == 1900:
            gap += timedelta(days=1)
        else:
            return _estimate_duration(transcript)
    minutes = round(gap.total_seconds() / 60)
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}m"


def unique_speakers(transcript: Sequence[TranscriptEntry], limit: int = MAX_SPEAKERS) -> List[str]:
    seen: Dict[str, None] = {}
    for e in transcript:
        seen.setdefault(e.name, None)
    return list(seen)[:limit]


def build_preview(transcript: Sequence[TranscriptEntry]) -> str:
    return " | ".join(f"{e.name}: {e.text[:PREVIEW_CHARS]}" for e in transcript[:PREVIEW_ENTRIES])


def build_metadata(session_id: str, transcript: Sequence[TranscriptEntry], report: Optional[AttendeeReport],
                   title: Optional[str], chunk_count: int, now: datetime) -> SessionMetadata:
    local = now.astimezone()
    return SessionMetadata(
        id=session_id,
        title=title or "Untitled Meeting",
        timestamp=now.astimezone(timezone.utc).isoformat(),
        date=local.strftime("%x"),
        time=local.strftime("%X"),
        caption_count=len(transcript),
        duration=calculate_duration(transcript),
        speakers=unique_speakers(transcript),
        attendees=list(report.attendee_list[:MAX_ATTENDEES]) if report else [],
        attendee_count=report.total_unique_attendees if report else 0,
        preview=build_preview(transcript),
        chunk_count=chunk_count,
    )


class ArchiveService:
    """Save, browse, export and delete archived meeting sessions."""

    def __init__(self, store: KeyValueStore, export_sink: Optional[ExportSink] = None,
                 viewer: Optional[Viewer] = None, aliases: Optional[Dict[str, str]] = None,
                 guard: Optional[AutoSaveGuard] = None, archive: Optional[ChunkedArchiveStore] = None,
                 default_format: str = config.DEFAULT_SAVE_FORMAT,
                 filename_pattern: Optional[str] = None,
                 auto_save_on_end: bool = config.AUTO_SAVE_ON_END,
                 save_as_type: str = config.SAVE_AS_TYPE,
                 save_location: str = config.SAVE_LOCATION,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.store = store
        self.archive = archive or ChunkedArchiveStore(store)
        self.export_sink = export_sink
        self.viewer = viewer
        self.aliases: Dict[str, str] = normalize_aliases(aliases)
        self.guard = guard or AutoSaveGuard()
        self.default_format = default_format
        self.filename_pattern = filename_pattern or config.FILENAME_PATTERN
        self.auto_save_on_end = auto_save_on_end
        self.save_as_type = save_as_type
        self.save_location = save_location
        self.clock = clock

    @property
    def index(self):
        return self.archive.index

    def set_alias(self, name: str, alias: str) -> None:
        if alias and alias.strip():
            self.aliases[name] = alias.strip()
        else:
            self.aliases.pop(name, None)

    async def save_to_history(self, transcript: Sequence[TranscriptEntry], attendee_report: Optional[AttendeeReport],
                              title: Optional[str]) -> SessionMetadata:
        session_id = new_session_id()
        # Chunks and attendee blob go in before the index entry that references them
        chunk_count = await self.archive.save(session_id, transcript, attendee_report)
        metadata = build_metadata(session_id, transcript, attendee_report, title, chunk_count, self.clock())
        await self.index.insert(metadata)
        logger.info("Session saved to history: %s (%d captions, %d chunks)",
                    session_id, metadata.caption_count, chunk_count)
        return metadata

    async def list_sessions(self) -> List[SessionMetadata]:
        return await self.index.list()

    async def load_session(self, session_id: str) -> SessionView:
        metadata = await self.index.get(session_id)
        transcript, report = await self.archive.load(session_id, metadata.chunk_count)
        return SessionView(
            metadata=metadata,
            transcript=apply_to_transcript(transcript, self.aliases),
            attendee_report=apply_to_attendee_report(report, self.aliases),
        )

    async def view_session(self, session_id: str) -> SessionView:
        view = await self.load_session(session_id)
        if self.viewer is not None:
            await self.viewer.show(view.transcript, view.metadata.title, view.attendee_report, True)
        return view

    def view_live(self, transcript: Sequence[TranscriptEntry]) -> List[TranscriptEntry]:
        return apply_to_transcript(list(transcript), self.aliases)

    async def export_session(self, session_id: str, fmt: Optional[str] = None) -> ExportResult:
        view = await self.load_session(session_id)
        return await self._export(view.transcript, view.attendee_report, view.metadata.title,
                                  fmt or self.default_format, view.metadata.timestamp, for_auto_save=False)

    async def download(self, transcript: Sequence[TranscriptEntry], attendee_report: Optional[AttendeeReport],
                       title: Optional[str], fmt: Optional[str] = None, recording_start_time: Any = None,
                       for_auto_save: bool = False) -> ExportResult:
        """Export a live transcript directly, without archiving it."""
        return await self._export(apply_to_transcript(list(transcript), self.aliases),
                                  apply_to_attendee_report(attendee_report, self.aliases),
                                  title, fmt or self.default_format, recording_start_time, for_auto_save)

    async def _export(self, transcript, report, title, fmt, recording_start_time, for_auto_save) -> ExportResult:
        if self.export_sink is None:
            raise RuntimeError("No export sink configured")
        doc = render(transcript, report, fmt)
        prefs = resolve_save_preferences(for_auto_save, self.save_as_type, self.save_location)
        name = generate_filename(self.filename_pattern, title, doc.format, report, recording_start_time)
        filename = f"{name}.{doc.extension}"
        if prefs.subfolder:
            filename = f"{prefs.subfolder}/{filename}"
        location = await self.export_sink.export(filename, doc.content, doc.mime_type, prefs.prompt_user)
        return ExportResult(filename=filename, location=location, mime_type=doc.mime_type, format=doc.format)

    async def delete_session(self, session_id: str) -> SessionMetadata:
        removed = await self.index.remove(session_id)
        logger.info("Deleted session %s", session_id)
        return removed

    async def clear_all(self) -> int:
        count = await self.index.clear()
        logger.info("Cleared %d session(s)", count)
        return count

    async def storage_stats(self) -> StorageStats:
        return StorageStats(used_bytes=await self.store.bytes_in_use(), quota_bytes=self.store.quota_bytes)

    def capture_started(self) -> None:
        self.guard.reset()

    async def handle_meeting_ended(self, transcript: Sequence[TranscriptEntry],
                                   attendee_report: Optional[AttendeeReport], title: Optional[str],
                                   recording_start_time: Any) -> AutoSaveOutcome:
        """Export the finished meeting once per key; history is written by ``save_to_history`` only."""
        outcome = AutoSaveOutcome(status="noop")

        async def _export():
            if not self.auto_save_on_end or not transcript:
                logger.info("Meeting %r ended; auto-save off or no captions, nothing to export", title)
                return
            logger.info("Auto-saving transcript in %s format", self.default_format.upper())
            outcome.export = await self.download(transcript, attendee_report, title, self.default_format,
                                                 recording_start_time, for_auto_save=True)
            outcome.status = "saved"

        key = auto_save_key(title, recording_start_time)
        try:
            ran = await self.guard.run(key, _export)
        except Exception as e:
            logger.exception("Auto-save failed for %s", key)
            return AutoSaveOutcome(status="failed", error=str(e))
        if not ran:
            return AutoSaveOutcome(status="skipped")
        logger.info("Auto-save completed for %s", key)
        return outcome
