import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from .config import SAVE_AS_TYPE, SAVE_LOCATION
from .models import AttendeeReport

FORBIDDEN_RE = re.compile(r'[<>:"/\\|?*\x00-\x1F]')
DEFAULT_PATTERN = "{date}_{title}_{format}"

@dataclass(frozen=True)
class SavePreferences:
    prompt_user: bool
    subfolder: str

def sanitize_meeting_name(full_title: Optional[str]) -> str:
    if not full_title:
        return "Meeting"
    parts = full_title.split("|")
    # "Meeting | Microsoft Teams" or "Location | Meeting | Microsoft Teams"
    name = parts[1] if len(parts) > 2 else parts[0]
    name = name.replace("Microsoft Teams", "").strip()
    return FORBIDDEN_RE.sub("_", name) or "Meeting"

def sanitize_subfolder(path: Optional[str]) -> str:
    if not path:
        return ""
    segments = [FORBIDDEN_RE.sub("_", s.strip()) for s in re.split(r"[\\/]+", path)]
    # ".." would escape the export root
    return "/".join(s for s in segments if s and s not in (".", ".."))

def _reference_datetime(recording_start_time: Any) -> datetime:
    try:
        if isinstance(recording_start_time, (int, float)):
            return datetime.fromtimestamp(recording_start_time / 1000, tz=timezone.utc).astimezone()
        if isinstance(recording_start_time, str) and recording_start_time:
            dt = datetime.fromisoformat(recording_start_time.replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone()
    except (ValueError, OverflowError, OSError):
        pass
    return datetime.now().astimezone()

def generate_filename(pattern: Optional[str], meeting_title: Optional[str], fmt: str,
                      report: Optional[AttendeeReport] = None, recording_start_time: Any = None) -> str:
    """Expand a filename pattern; the extension is not included."""
    ref = _reference_datetime(recording_start_time)
    date_str = ref.strftime("%Y-%m-%d")
    time_str = ref.strftime("%H-%M-%S")
    attendee_count = report.total_unique_attendees if report else 0

    replacements = {
        "{date}": date_str,
        "{time}": time_str,
        "{datetime}": f"{date_str}_{time_str}",
        "{title}": sanitize_meeting_name(meeting_title),
        "{format}": fmt,
        "{attendees}": f"{attendee_count}_attendees" if attendee_count > 0 else "",
    }
    filename = pattern or DEFAULT_PATTERN
    for token, value in replacements.items():
        filename = filename.replace(token, value)

    filename = re.sub(r"__+", "_", filename)
    filename = re.sub(r"_+$", "", filename)
    return FORBIDDEN_RE.sub("_", filename) or "Meeting"

def resolve_save_preferences(for_auto_save: bool = False, save_as_type: str = SAVE_AS_TYPE,
                             save_location: str = SAVE_LOCATION) -> SavePreferences:
    save_as_type = save_as_type or "prompt"
    # Auto-save never shows a dialog
    prompt_user = not for_auto_save and save_as_type == "prompt"
    subfolder = sanitize_subfolder(save_location) if save_as_type == "custom" else ""
    return SavePreferences(prompt_user=prompt_user, subfolder=subfolder)
