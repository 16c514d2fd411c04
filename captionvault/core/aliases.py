"""Speaker alias overlay.

Aliases replace detected display names with user-chosen ones. The overlay is
pure: inputs are never mutated and bad alias data means "no aliasing".
"""
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .models import AttendeeReport, TranscriptEntry

logger = logging.getLogger(__name__)

AliasMap = Mapping[str, str]


def normalize_aliases(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    return {k: v for k, v in raw.items() if isinstance(k, str) and isinstance(v, str)}


def resolve_name(name: Any, aliases: AliasMap) -> Any:
    alias = aliases.get(name) if isinstance(name, str) else None
    if isinstance(alias, str) and alias.strip():
        return alias.strip()
    return name


def apply_to_transcript(transcript: List[TranscriptEntry], aliases: Optional[AliasMap]) -> List[TranscriptEntry]:
    aliases = normalize_aliases(aliases)
    if not aliases:
        return list(transcript)
    return [replace(e, name=resolve_name(e.name, aliases)) for e in transcript]


def apply_to_attendee_report(report: Optional[AttendeeReport],
                             aliases: Optional[AliasMap]) -> Optional[AttendeeReport]:
    aliases = normalize_aliases(aliases)
    if report is None or not aliases:
        return report
    return replace(
        report,
        attendee_list=[resolve_name(n, aliases) for n in report.attendee_list],
        current_attendees=[{**a, "name": resolve_name(a.get("name"), aliases)} for a in report.current_attendees],
        attendee_history=[{**ev, "name": resolve_name(ev.get("name"), aliases)} for ev in report.attendee_history],
    )


def load_aliases(path: Optional[str]) -> Dict[str, str]:
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        logger.warning("Alias file %s not found; names will not be aliased", p)
        return {}
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable alias file %s: %s", p, e)
        return {}
    return normalize_aliases(raw)
