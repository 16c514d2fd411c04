import json
import re
from pathlib import Path
from typing import List, Optional, Tuple
from .models import AttendeeReport, TranscriptEntry, entries_from_dicts, report_from_dict

LINE_RE = re.compile(r"^\[([^\]]+)\]\s([^:]+):\s?(.*)$")  # [Time] Name: Text

def parse_text(text: str) -> List[TranscriptEntry]:
    """Parse plain-text export lines back into entries; other lines are skipped."""
    entries: List[TranscriptEntry] = []
    for line in text.splitlines():
        m = LINE_RE.match(line.strip())
        if not m:
            continue
        time, name, content = m.groups()
        entries.append(TranscriptEntry(time=time.strip(), name=name.strip(), text=content))
    return entries

def parse_file(path: str) -> Tuple[str, List[TranscriptEntry], Optional[AttendeeReport]]:
    """Load a transcript from a .json capture dump or a .txt export.

    JSON files may be a bare list of {Time, Name, Text} objects or an object with
    ``transcriptArray``, ``attendeeReport`` and ``meetingTitle``. Returns
    (title, entries, attendee report).
    """
    p = Path(path)
    raw = p.read_text(encoding="utf-8")
    if p.suffix.lower() != ".json":
        return p.stem, parse_text(raw), None

    data = json.loads(raw)
    if isinstance(data, list):
        return p.stem, entries_from_dicts(data), None
    title = data.get("meetingTitle") or p.stem
    return title, entries_from_dicts(data.get("transcriptArray") or []), report_from_dict(data.get("attendeeReport"))
