"""Messages from the capture side and the dispatcher that handles them.

Each message kind is its own frozen dataclass and has exactly one handler.
``parse_message`` is the only place that looks at the wire ``message`` name.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from .errors import ArchiveError
from .models import AttendeeReport, TranscriptEntry, entries_from_dicts, report_from_dict
from .service import ArchiveService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveSessionHistory:
    transcript: Tuple[TranscriptEntry, ...]
    attendee_report: Optional[AttendeeReport] = None
    meeting_title: Optional[str] = None


@dataclass(frozen=True)
class DownloadCaptions:
    transcript: Tuple[TranscriptEntry, ...]
    attendee_report: Optional[AttendeeReport] = None
    meeting_title: Optional[str] = None
    format: Optional[str] = None
    recording_start_time: Any = None


@dataclass(frozen=True)
class SaveOnLeave:
    transcript: Tuple[TranscriptEntry, ...]
    attendee_report: Optional[AttendeeReport] = None
    meeting_title: Optional[str] = None
    recording_start_time: Any = None


@dataclass(frozen=True)
class DisplayCaptions:
    transcript: Tuple[TranscriptEntry, ...]
    meeting_title: Optional[str] = None


@dataclass(frozen=True)
class CaptureStatusChanged:
    capturing: bool


@dataclass(frozen=True)
class ErrorLogged:
    error: str


Message = Union[SaveSessionHistory, DownloadCaptions, SaveOnLeave, DisplayCaptions,
                CaptureStatusChanged, ErrorLogged]


@dataclass
class Reply:
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def _transcript(payload: Dict[str, Any]) -> Tuple[TranscriptEntry, ...]:
    return tuple(entries_from_dicts(payload.get("transcriptArray") or []))


def parse_message(payload: Dict[str, Any]) -> Message:
    """Build a message from its wire form; raises ValueError for unknown or malformed input."""
    kind = payload.get("message")
    try:
        if kind == "save_session_history":
            return SaveSessionHistory(_transcript(payload), report_from_dict(payload.get("attendeeReport")),
                                      payload.get("meetingTitle"))
        if kind == "download_captions":
            return DownloadCaptions(_transcript(payload), report_from_dict(payload.get("attendeeReport")),
                                    payload.get("meetingTitle"), payload.get("format"),
                                    payload.get("recordingStartTime"))
        if kind == "save_on_leave":
            return SaveOnLeave(_transcript(payload), report_from_dict(payload.get("attendeeReport")),
                               payload.get("meetingTitle"), payload.get("recordingStartTime"))
        if kind == "display_captions":
            return DisplayCaptions(_transcript(payload), payload.get("meetingTitle"))
        if kind == "update_badge_status":
            return CaptureStatusChanged(bool(payload.get("capturing")))
        if kind == "error_logged":
            return ErrorLogged(str(payload.get("error", "")))
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed {kind} message: {e}")
    raise ValueError(f"Unknown message kind: {kind!r}")


class Dispatcher:
    """Routes messages to the archive service and turns failures into replies."""

    def __init__(self, service: ArchiveService):
        self.service = service
        self._handlers = {
            SaveSessionHistory: self._save_session_history,
            DownloadCaptions: self._download_captions,
            SaveOnLeave: self._save_on_leave,
            DisplayCaptions: self._display_captions,
            CaptureStatusChanged: self._capture_status_changed,
            ErrorLogged: self._error_logged,
        }

    async def dispatch(self, message: Message) -> Reply:
        handler = self._handlers[type(message)]
        try:
            return await handler(message)
        except ArchiveError as e:
            logger.error("%s failed: %s", type(message).__name__, e)
            return Reply(ok=False, error=str(e))
        except Exception as e:
            logger.exception("%s failed unexpectedly", type(message).__name__)
            return Reply(ok=False, error=str(e))

    async def _save_session_history(self, msg: SaveSessionHistory) -> Reply:
        meta = await self.service.save_to_history(list(msg.transcript), msg.attendee_report, msg.meeting_title)
        return Reply(ok=True, data={"session": meta.to_dict()})

    async def _download_captions(self, msg: DownloadCaptions) -> Reply:
        result = await self.service.download(list(msg.transcript), msg.attendee_report, msg.meeting_title,
                                             msg.format, msg.recording_start_time)
        return Reply(ok=True, data={"filename": result.filename, "location": result.location,
                                    "mimeType": result.mime_type})

    async def _save_on_leave(self, msg: SaveOnLeave) -> Reply:
        outcome = await self.service.handle_meeting_ended(list(msg.transcript), msg.attendee_report,
                                                          msg.meeting_title, msg.recording_start_time)
        data: Dict[str, Any] = {"status": outcome.status}
        if outcome.export:
            data["filename"] = outcome.export.filename
        return Reply(ok=outcome.status != "failed", data=data, error=outcome.error)

    async def _display_captions(self, msg: DisplayCaptions) -> Reply:
        if self.service.viewer is None:
            return Reply(ok=False, error="No viewer configured")
        transcript = self.service.view_live(list(msg.transcript))
        await self.service.viewer.show(transcript, msg.meeting_title or "Live captions", None, False)
        return Reply(ok=True, data={"captionCount": len(transcript)})

    async def _capture_status_changed(self, msg: CaptureStatusChanged) -> Reply:
        if msg.capturing:
            self.service.capture_started()
        return Reply(ok=True, data={"capturing": msg.capturing})

    async def _error_logged(self, msg: ErrorLogged) -> Reply:
        logger.warning("Error logged by capture side: %s", msg.error)
        return Reply(ok=True)
