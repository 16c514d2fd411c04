import html
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

from .models import AttendeeReport, TranscriptEntry

@dataclass(frozen=True)
class RenderedDocument:
    format: str
    content: str
    mime_type: str
    extension: str

FORMATS = {
    # format: (mime type, extension)
    "txt": ("text/plain", "txt"),
    "md": ("text/markdown", "md"),
    "html": ("text/html", "html"),
    "doc": ("text/html", "doc"),  # HTML body, Word opens it
}
DEFAULT_FORMAT = "txt"

def normalize_format(fmt: Any) -> str:
    f = fmt.strip().lower() if isinstance(fmt, str) else ""
    return f if f in FORMATS else DEFAULT_FORMAT

def format_meeting_start(value: Any) -> str:
    """Meeting start as local date-time text; epoch millis or ISO input."""
    if value is None or value == "":
        return ""
    try:
        if isinstance(value, (int, float)):
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        else:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return str(value)
    return dt.astimezone().strftime("%x, %X")

def _has_attendees(report: Optional[AttendeeReport]) -> bool:
    return report is not None and report.total_unique_attendees > 0

def format_as_txt(transcript: List[TranscriptEntry], report: Optional[AttendeeReport] = None) -> str:
    content = ""
    if _has_attendees(report):
        content += "=== MEETING ATTENDEES ===\n"
        content += f"Total Attendees: {report.total_unique_attendees}\n"
        content += f"Meeting Start: {format_meeting_start(report.meeting_start_time)}\n"
        content += "\nAttendee List:\n"
        for name in report.attendee_list:
            content += f"- {name}\n"
        content += "\n=== TRANSCRIPT ===\n"
    content += "\n".join(f"[{e.time}] {e.name}: {e.text}" for e in transcript)
    return content

def format_as_markdown(transcript: List[TranscriptEntry], report: Optional[AttendeeReport] = None) -> str:
    content = ""
    if _has_attendees(report):
        content += "# Meeting Attendees\n\n"
        content += f"**Total Attendees:** {report.total_unique_attendees}\n\n"
        content += f"**Meeting Start:** {format_meeting_start(report.meeting_start_time)}\n\n"
        content += "## Attendee List\n\n"
        for name in report.attendee_list:
            content += f"- {name}\n"
        content += "\n---\n\n# Transcript\n\n"

    lines = []
    last_speaker = None
    for e in transcript:
        if e.name != last_speaker:
            last_speaker = e.name
            lines.append(f"\n**{e.name}** ({e.time}):\n> {e.text}")
        else:
            lines.append(f"> {e.text}")
    content += "\n".join(lines).strip()
    return content.strip()

def format_as_html(transcript: List[TranscriptEntry], report: Optional[AttendeeReport] = None) -> str:
    esc = html.escape
    body = ""
    if _has_attendees(report):
        body += "<h2>Meeting Attendees</h2>"
        body += f"<p><b>Total Attendees:</b> {report.total_unique_attendees}</p>"
        body += f"<p><b>Meeting Start:</b> {esc(format_meeting_start(report.meeting_start_time))}</p>"
        body += "<h3>Attendee List</h3><ul>"
        body += "".join(f"<li>{esc(str(name))}</li>" for name in report.attendee_list)
        body += "</ul><hr><h2>Transcript</h2>"
    body += "".join(
        f"<p><b>{esc(e.name)}</b> (<i>{esc(e.time)}</i>): {esc(e.text)}</p>" for e in transcript
    )
    return ('<!DOCTYPE html><html><head><meta charset="UTF-8"><title>Meeting Transcript</title></head>'
            f"<body>{body}</body></html>")

_RENDERERS = {
    "txt": format_as_txt,
    "md": format_as_markdown,
    "html": format_as_html,
    "doc": format_as_html,
}

def render(transcript: List[TranscriptEntry], report: Optional[AttendeeReport] = None,
           fmt: Any = DEFAULT_FORMAT) -> RenderedDocument:
    f = normalize_format(fmt)
    mime_type, extension = FORMATS[f]
    return RenderedDocument(format=f, content=_RENDERERS[f](transcript, report),
                            mime_type=mime_type, extension=extension)
