import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from rich.console import Console
from rich.table import Table

from .config import EXPORT_DIR
from .models import AttendeeReport, TranscriptEntry

logger = logging.getLogger(__name__)


class ExportSink(Protocol):
    async def export(self, filename: str, content: str, mime_type: str, prompt_user: bool) -> str: ...


class Viewer(Protocol):
    async def show(self, transcript: List[TranscriptEntry], title: str,
                   attendee_report: Optional[AttendeeReport], is_historical: bool) -> None: ...


class FileExportSink:
    """Writes exports under a base directory; ``filename`` may contain a subfolder."""

    def __init__(self, base_dir: str = EXPORT_DIR):
        self.base_dir = Path(base_dir)

    def _write(self, filename: str, content: str) -> Path:
        target = self.base_dir / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    async def export(self, filename: str, content: str, mime_type: str, prompt_user: bool) -> str:
        if prompt_user:
            logger.info("Save location prompt requested for %s; writing to %s", filename, self.base_dir)
        path = await asyncio.to_thread(self._write, filename, content)
        logger.info("Exported %s (%s, %d chars)", path, mime_type, len(content))
        return str(path)


@dataclass
class ViewRecord:
    transcript: List[TranscriptEntry]
    title: str
    attendee_report: Optional[AttendeeReport]
    is_historical: bool


class RecordingViewer:
    """Keeps the most recent view request."""

    def __init__(self):
        self.last: Optional[ViewRecord] = None

    async def show(self, transcript, title, attendee_report, is_historical) -> None:
        self.last = ViewRecord(list(transcript), title, attendee_report, is_historical)


class RichViewer:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    async def show(self, transcript, title, attendee_report, is_historical) -> None:
        label = "archived" if is_historical else "live"
        table = Table(title=f"{title} ({label})")
        table.add_column("Time", style="cyan", no_wrap=True)
        table.add_column("Speaker", style="magenta")
        table.add_column("Text")
        for e in transcript:
            table.add_row(e.time, e.name, e.text)
        self.console.print(table)
        if attendee_report and attendee_report.total_unique_attendees > 0:
            self.console.print(f"Attendees ({attendee_report.total_unique_attendees}): "
                               + ", ".join(attendee_report.attendee_list))
