import asyncio
import pytest
from captionvault.core.messages import (CaptureStatusChanged, DisplayCaptions, Dispatcher, DownloadCaptions,
                                        ErrorLogged, SaveOnLeave, SaveSessionHistory, parse_message)
from captionvault.core.models import TranscriptEntry
from captionvault.core.service import ArchiveService
from captionvault.core.sinks import RecordingViewer
from captionvault.core.storage import MemoryStore

CAPTIONS = [{"Time": "10:00", "Name": "Alice", "Text": "Hi"}, {"Time": "10:01", "Name": "Bob", "Text": "Yo"}]

class NullSink:
    def __init__(self):
        self.count = 0

    async def export(self, filename, content, mime_type, prompt_user):
        self.count += 1
        return filename

def _dispatcher(**kw):
    service = ArchiveService(MemoryStore(), export_sink=NullSink(), viewer=RecordingViewer(),
                             auto_save_on_end=True, filename_pattern="{title}_{format}", **kw)
    return Dispatcher(service)

def test_parse_each_kind():
    assert isinstance(parse_message({"message": "save_session_history", "transcriptArray": CAPTIONS}), SaveSessionHistory)
    dl = parse_message({"message": "download_captions", "transcriptArray": CAPTIONS, "format": "md",
                        "meetingTitle": "T", "recordingStartTime": "2025-01-01T10:00:00Z"})
    assert isinstance(dl, DownloadCaptions) and dl.format == "md"
    leave = parse_message({"message": "save_on_leave", "transcriptArray": CAPTIONS, "meetingTitle": "T",
                           "recordingStartTime": 5})
    assert isinstance(leave, SaveOnLeave)
    assert leave.transcript[0] == TranscriptEntry("10:00", "Alice", "Hi")
    assert isinstance(parse_message({"message": "display_captions", "transcriptArray": CAPTIONS}), DisplayCaptions)
    assert parse_message({"message": "update_badge_status", "capturing": True}) == CaptureStatusChanged(True)
    assert parse_message({"message": "error_logged", "error": "x"}) == ErrorLogged("x")

def test_parse_rejects_unknown_and_malformed():
    with pytest.raises(ValueError):
        parse_message({"message": "open_ai_assistants"})
    with pytest.raises(ValueError):
        parse_message({"message": "save_on_leave", "transcriptArray": [{"Time": "1"}]})

def test_save_on_leave_dedupes_until_capture_restarts():
    d = _dispatcher()
    msg = parse_message({"message": "save_on_leave", "transcriptArray": CAPTIONS, "meetingTitle": "A",
                         "recordingStartTime": "T0"})

    async def go():
        first = await d.dispatch(msg)
        second = await d.dispatch(msg)
        await d.dispatch(CaptureStatusChanged(True))
        third = await d.dispatch(msg)
        return first, second, third

    first, second, third = asyncio.run(go())
    assert first.ok and first.data["status"] == "saved"
    assert second.ok and second.data["status"] == "skipped"
    assert third.data["status"] == "saved"
    assert d.service.export_sink.count == 2

def test_capture_stopped_does_not_reset():
    d = _dispatcher()
    msg = SaveOnLeave(tuple(TranscriptEntry(c["Time"], c["Name"], c["Text"]) for c in CAPTIONS), None, "A", "T0")

    async def go():
        await d.dispatch(msg)
        await d.dispatch(CaptureStatusChanged(False))
        return await d.dispatch(msg)

    assert asyncio.run(go()).data["status"] == "skipped"

def test_display_captions_goes_to_viewer_as_live():
    d = _dispatcher(aliases={"Bob": "Robert"})
    reply = asyncio.run(d.dispatch(parse_message({"message": "display_captions", "transcriptArray": CAPTIONS})))
    assert reply.ok
    last = d.service.viewer.last
    assert last.is_historical is False
    assert [e.name for e in last.transcript] == ["Alice", "Robert"]

def test_errors_become_failed_replies():
    d = _dispatcher()
    reply = asyncio.run(d.dispatch(DownloadCaptions(tuple(), None, "T", "txt", None)))
    assert reply.ok
    d.service.export_sink = None
    reply = asyncio.run(d.dispatch(DownloadCaptions(tuple(), None, "T", "txt", None)))
    assert reply.ok is False and "No export sink" in reply.error

def test_save_session_history_reply():
    d = _dispatcher()
    reply = asyncio.run(d.dispatch(parse_message({"message": "save_session_history", "transcriptArray": CAPTIONS,
                                                  "meetingTitle": "Sync"})))
    assert reply.ok
    assert reply.data["session"]["title"] == "Sync"
    assert reply.data["session"]["chunkCount"] == 1
