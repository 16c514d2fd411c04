import asyncio
from datetime import datetime, timedelta, timezone
import pytest
from captionvault.core.errors import ArchiveCorruptError, SessionNotFoundError, StoreWriteError
from captionvault.core.archive import chunk_key
from captionvault.core.index import INDEX_KEY
from captionvault.core.models import AttendeeReport, TranscriptEntry
from captionvault.core.service import ArchiveService, calculate_duration
from captionvault.core.sinks import RecordingViewer
from captionvault.core.storage import MemoryStore

class CollectingSink:
    def __init__(self, fail=False):
        self.exports = []
        self.fail = fail

    async def export(self, filename, content, mime_type, prompt_user):
        if self.fail:
            raise OSError("export target unavailable")
        self.exports.append((filename, content, mime_type, prompt_user))
        return f"/exports/{filename}"

class TickingClock:
    def __init__(self):
        self.now = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now

TRANSCRIPT = [
    TranscriptEntry("10:00", "Alice", "Hi"),
    TranscriptEntry("10:01", "Alice", "There"),
    TranscriptEntry("10:02", "Bob", "<script>"),
]

def _report():
    return AttendeeReport(meeting_start_time=1700000000000, total_unique_attendees=2, attendee_list=["Alice", "Bob"],
                          current_attendees=[{"name": "Bob"}], attendee_history=[{"name": "Alice", "event": "joined"}])

def _service(**kw):
    kw.setdefault("export_sink", CollectingSink())
    kw.setdefault("viewer", RecordingViewer())
    kw.setdefault("clock", TickingClock())
    kw.setdefault("save_as_type", "prompt")
    kw.setdefault("save_location", "")
    kw.setdefault("filename_pattern", "{title}_{format}")
    kw.setdefault("auto_save_on_end", True)
    kw.setdefault("default_format", "txt")
    return ArchiveService(kw.pop("store", None) or MemoryStore(), **kw)

def test_save_builds_metadata():
    service = _service()
    meta = asyncio.run(service.save_to_history(TRANSCRIPT, _report(), "Weekly Sync"))
    assert meta.id.startswith("session_")
    assert meta.title == "Weekly Sync"
    assert meta.caption_count == 3
    assert meta.speakers == ["Alice", "Bob"]
    assert meta.attendees == ["Alice", "Bob"]
    assert meta.attendee_count == 2
    assert meta.preview == "Alice: Hi | Alice: There | Bob: <script>"
    assert meta.chunk_count == 1
    assert meta.duration == "2 min"
    assert asyncio.run(service.list_sessions()) == [meta]

def test_metadata_caps_and_untitled():
    service = _service()
    long = [TranscriptEntry(f"{i}", f"S{i}", "x" * 80) for i in range(15)]
    report = AttendeeReport(meeting_start_time=0, total_unique_attendees=30, attendee_list=[f"P{i}" for i in range(30)])
    meta = asyncio.run(service.save_to_history(long, report, ""))
    assert meta.title == "Untitled Meeting"
    assert meta.speakers == [f"S{i}" for i in range(10)]
    assert len(meta.attendees) == 20
    assert meta.preview.split(" | ")[0] == "S0: " + "x" * 50

def test_duration_text():
    assert calculate_duration([]) == "0 min"
    assert calculate_duration([TranscriptEntry("09:00", "A", ""), TranscriptEntry("10:30", "A", "")]) == "1h 30m"
    assert calculate_duration([TranscriptEntry("09:00:00 AM", "A", ""), TranscriptEntry("09:20:00 AM", "A", "")]) == "20 min"
    assert calculate_duration([TranscriptEntry("start", "A", "")] * 40) == "~2 min"

def test_duration_across_midnight():
    crossing = [TranscriptEntry("23:50", "A", ""), TranscriptEntry("00:10", "B", "")]
    assert calculate_duration(crossing) == "20 min"
    late = [TranscriptEntry("11:30:00 PM", "A", ""), TranscriptEntry("12:45:00 AM", "A", "")]
    assert calculate_duration(late) == "1h 15m"
    # Full timestamps out of order are not wrapped
    backwards = [TranscriptEntry("2025-03-01T10:00:00", "A", ""), TranscriptEntry("2025-03-01T09:00:00", "A", "")]
    assert calculate_duration(backwards) == "~0 min"

def test_view_applies_current_aliases_and_notifies_viewer():
    service = _service()
    meta = asyncio.run(service.save_to_history(TRANSCRIPT, _report(), "Sync"))
    service.set_alias("Alice", "Al")
    view = asyncio.run(service.view_session(meta.id))
    assert [e.name for e in view.transcript] == ["Al", "Al", "Bob"]
    assert view.attendee_report.attendee_list == ["Al", "Bob"]
    assert service.viewer.last.is_historical is True
    assert service.viewer.last.title == "Sync"
    # Archived data stays raw
    service.set_alias("Alice", "")
    assert asyncio.run(service.view_session(meta.id)).transcript == TRANSCRIPT

def test_export_session_renders_and_sends_to_sink():
    service = _service()
    meta = asyncio.run(service.save_to_history(TRANSCRIPT, None, "Design | Microsoft Teams"))
    result = asyncio.run(service.export_session(meta.id, "html"))
    filename, content, mime_type, prompt_user = service.export_sink.exports[-1]
    assert filename == "Design_html.html" == result.filename
    assert mime_type == "text/html"
    assert "&lt;script&gt;" in content and "<script>" not in content
    assert prompt_user is True
    assert result.location == "/exports/Design_html.html"

def test_export_unknown_format_is_plain_text():
    service = _service()
    meta = asyncio.run(service.save_to_history(TRANSCRIPT, None, "Sync"))
    result = asyncio.run(service.export_session(meta.id, "pdf"))
    assert result.mime_type == "text/plain"
    assert result.filename == "Sync_txt.txt"

def test_export_custom_subfolder():
    service = _service(save_as_type="custom", save_location="Meetings/Team")
    result = asyncio.run(service.download(TRANSCRIPT, None, "Sync", "md"))
    assert result.filename == "Meetings/Team/Sync_md.md"
    assert service.export_sink.exports[-1][3] is False

def test_unknown_session():
    service = _service()
    for op in (service.view_session, service.export_session, service.delete_session):
        with pytest.raises(SessionNotFoundError):
            asyncio.run(op("session_missing"))

def test_corrupt_session_is_reported_not_deleted():
    store = MemoryStore()
    service = _service(store=store)
    meta = asyncio.run(service.save_to_history(TRANSCRIPT, None, "Sync"))
    asyncio.run(store.remove([chunk_key(meta.id, 0)]))
    with pytest.raises(ArchiveCorruptError):
        asyncio.run(service.view_session(meta.id))
    assert [m.id for m in asyncio.run(service.list_sessions())] == [meta.id]

def test_delete_and_clear_cascade():
    store = MemoryStore()
    service = _service(store=store)
    a = asyncio.run(service.save_to_history(TRANSCRIPT, _report(), "A"))
    b = asyncio.run(service.save_to_history(TRANSCRIPT, _report(), "B"))
    asyncio.run(service.delete_session(a.id))
    assert not any(k.startswith(a.id) for k in store.keys())
    assert any(k.startswith(b.id) for k in store.keys())
    assert asyncio.run(service.clear_all()) == 1
    assert store.keys() == [INDEX_KEY]

def test_eleventh_save_evicts_oldest():
    store = MemoryStore()
    service = _service(store=store)
    metas = [asyncio.run(service.save_to_history(TRANSCRIPT, None, f"M{i}")) for i in range(11)]
    listed = asyncio.run(service.list_sessions())
    assert len(listed) == 10
    assert [m.id for m in listed] == [m.id for m in reversed(metas[1:])]
    assert not any(k.startswith(metas[0].id) for k in store.keys())

def test_manual_save_write_error_leaves_index_unchanged():
    store = MemoryStore(max_item_bytes=200)
    service = _service(store=store)
    with pytest.raises(StoreWriteError):
        asyncio.run(service.save_to_history(TRANSCRIPT * 10, None, "Too big"))
    assert asyncio.run(service.list_sessions()) == []
    assert store.keys() == []

def test_meeting_ended_exports_once():
    service = _service()

    async def go():
        return await asyncio.gather(
            service.handle_meeting_ended(TRANSCRIPT, _report(), "A", "T0"),
            service.handle_meeting_ended(TRANSCRIPT, _report(), "A", "T0"),
        )

    first, second = asyncio.run(go())
    assert first.status == "saved" and second.status == "skipped"
    assert first.export.filename == "A_txt.txt"
    assert len(service.export_sink.exports) == 1
    # Auto-save never prompts
    assert service.export_sink.exports[0][3] is False

    again = asyncio.run(service.handle_meeting_ended(TRANSCRIPT, _report(), "A", "T0"))
    assert again.status == "skipped"

    service.capture_started()
    after_reset = asyncio.run(service.handle_meeting_ended(TRANSCRIPT, _report(), "A", "T0"))
    assert after_reset.status == "saved"
    assert len(service.export_sink.exports) == 2

def test_meeting_ended_never_writes_history():
    service = _service()
    saved = asyncio.run(service.save_to_history(TRANSCRIPT, _report(), "A"))
    asyncio.run(service.handle_meeting_ended(TRANSCRIPT, _report(), "A", "T0"))
    assert [m.id for m in asyncio.run(service.list_sessions())] == [saved.id]

def test_meeting_ended_with_auto_save_off_does_nothing():
    service = _service(auto_save_on_end=False)
    outcome = asyncio.run(service.handle_meeting_ended(TRANSCRIPT, None, "A", "T0"))
    assert outcome.status == "noop" and outcome.export is None
    assert service.export_sink.exports == []
    assert asyncio.run(service.list_sessions()) == []
    # The key is still consumed
    assert asyncio.run(service.handle_meeting_ended(TRANSCRIPT, None, "A", "T0")).status == "skipped"

def test_meeting_ended_with_empty_transcript_exports_nothing():
    service = _service()
    outcome = asyncio.run(service.handle_meeting_ended([], None, "A", "T0"))
    assert outcome.status == "noop"
    assert service.export_sink.exports == []

def test_failed_auto_save_is_reported_and_retryable():
    service = _service(export_sink=CollectingSink(fail=True))
    outcome = asyncio.run(service.handle_meeting_ended(TRANSCRIPT, None, "A", "T0"))
    assert outcome.status == "failed"
    assert "export target unavailable" in outcome.error
    assert service.guard.state.last_handled_key is None
    assert service.guard.state.in_progress is False

    service.export_sink.fail = False
    retry = asyncio.run(service.handle_meeting_ended(TRANSCRIPT, None, "A", "T0"))
    assert retry.status == "saved"
    assert len(service.export_sink.exports) == 1
    assert asyncio.run(service.list_sessions()) == []

def test_failed_then_retried_auto_save_keeps_one_history_entry():
    service = _service(export_sink=CollectingSink(fail=True))
    asyncio.run(service.save_to_history(TRANSCRIPT, None, "A"))
    assert asyncio.run(service.handle_meeting_ended(TRANSCRIPT, None, "A", "T0")).status == "failed"
    service.export_sink.fail = False
    assert asyncio.run(service.handle_meeting_ended(TRANSCRIPT, None, "A", "T0")).status == "saved"
    assert len(asyncio.run(service.list_sessions())) == 1

def test_storage_stats():
    service = _service(store=MemoryStore(quota_bytes=10000))
    asyncio.run(service.save_to_history(TRANSCRIPT, None, "A"))
    stats = asyncio.run(service.storage_stats())
    assert stats.used_bytes > 0
    assert stats.quota_bytes == 10000
    assert 0 < stats.percent_used < 100
    assert stats.to_dict()["percentUsed"] == stats.percent_used
