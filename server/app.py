from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

# Make local package importable
import sys
import threading
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from captionvault.core import config
from captionvault.core.aliases import load_aliases
from captionvault.core.errors import ArchiveCorruptError, ArchiveError, SessionNotFoundError, StoreWriteError
from captionvault.core.formats import render
from captionvault.core.logging_setup import setup_logging
from captionvault.core.messages import Dispatcher, parse_message
from captionvault.core.models import entries_from_dicts, report_from_dict
from captionvault.core.service import ArchiveService
from captionvault.core.sinks import FileExportSink, RecordingViewer
from captionvault.core.storage import open_store

app = FastAPI(title="Caption Archive API")

_service: Optional[ArchiveService] = None
_service_lock = threading.Lock()

def get_service() -> ArchiveService:
    # Sync dependency, so FastAPI may call it from several worker threads at once
    global _service
    with _service_lock:
        if _service is None:
            _service = ArchiveService(
                open_store(config.STORE_PATH),
                export_sink=FileExportSink(config.EXPORT_DIR),
                viewer=RecordingViewer(),
                aliases=load_aliases(config.ALIASES_PATH),
            )
        return _service

@app.on_event("startup")
def _startup():
    setup_logging()

@app.exception_handler(SessionNotFoundError)
async def _not_found(request: Request, exc: SessionNotFoundError):
    return JSONResponse(status_code=404, content={"ok": False, "message": str(exc)})

@app.exception_handler(ArchiveCorruptError)
async def _corrupt(request: Request, exc: ArchiveCorruptError):
    return JSONResponse(status_code=422, content={"ok": False, "message": str(exc)})

@app.exception_handler(StoreWriteError)
async def _store_write(request: Request, exc: StoreWriteError):
    return JSONResponse(status_code=507, content={"ok": False, "message": str(exc)})

@app.exception_handler(ArchiveError)
async def _archive_error(request: Request, exc: ArchiveError):
    return JSONResponse(status_code=503, content={"ok": False, "message": str(exc)})

def _entry_dicts(entries) -> List[Dict[str, str]]:
    return [e.to_dict() for e in entries]

@app.get("/api/sessions")
async def sessions(service: ArchiveService = Depends(get_service)):
    rows = await service.list_sessions()
    stats = await service.storage_stats()
    return {"ok": True, "sessions": [m.to_dict() for m in rows], "storage": stats.to_dict()}

@app.post("/api/sessions")
async def save_session(payload: Dict[str, Any] = Body(...), service: ArchiveService = Depends(get_service)):
    try:
        entries = entries_from_dicts(payload.get("transcriptArray") or [])
        report = report_from_dict(payload.get("attendeeReport"))
    except (KeyError, TypeError, ValueError) as e:
        return JSONResponse(status_code=400, content={"ok": False, "message": f"Malformed transcript: {e}"})
    meta = await service.save_to_history(entries, report, payload.get("meetingTitle"))
    return {"ok": True, "session": meta.to_dict()}

@app.get("/api/sessions/{session_id}")
async def view_session(session_id: str, service: ArchiveService = Depends(get_service)):
    view = await service.view_session(session_id)
    return {
        "ok": True,
        "session": view.metadata.to_dict(),
        "transcriptArray": _entry_dicts(view.transcript),
        "attendeeReport": view.attendee_report.to_dict() if view.attendee_report else None,
        "isHistorical": True,
    }

@app.get("/api/sessions/{session_id}/render")
async def render_session(session_id: str, format: str = "txt", service: ArchiveService = Depends(get_service)):
    view = await service.load_session(session_id)
    doc = render(view.transcript, view.attendee_report, format)
    return Response(content=doc.content, media_type=doc.mime_type)

@app.post("/api/sessions/{session_id}/export")
async def export_session(session_id: str, format: Optional[str] = None,
                         service: ArchiveService = Depends(get_service)):
    result = await service.export_session(session_id, format)
    return {"ok": True, "filename": result.filename, "location": result.location, "mimeType": result.mime_type}

@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, service: ArchiveService = Depends(get_service)):
    meta = await service.delete_session(session_id)
    return {"ok": True, "deleted": meta.id}

@app.delete("/api/sessions")
async def clear_sessions(service: ArchiveService = Depends(get_service)):
    count = await service.clear_all()
    return {"ok": True, "deleted": count}

@app.get("/api/storage")
async def storage(service: ArchiveService = Depends(get_service)):
    stats = await service.storage_stats()
    return {"ok": True, **stats.to_dict()}

@app.post("/api/messages")
async def messages(payload: Dict[str, Any] = Body(...), service: ArchiveService = Depends(get_service)):
    try:
        message = parse_message(payload)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"ok": False, "message": str(e)})
    reply = await Dispatcher(service).dispatch(message)
    return {"ok": reply.ok, "data": reply.data, "error": reply.error}
