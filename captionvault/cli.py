import asyncio
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from .core import config
from .core.aliases import load_aliases
from .core.errors import ArchiveError
from .core.logging_setup import setup_logging
from .core.parser import parse_file
from .core.service import ArchiveService
from .core.sinks import FileExportSink, RichViewer
from .core.storage import open_store

app = typer.Typer(help="Meeting caption archive CLI")
console = Console()

def _fail(e: Exception):
    console.print(f"[red]{e}[/red]")
    raise typer.Exit(1)

def _service(db_path: Optional[str] = None, export_dir: Optional[str] = None) -> ArchiveService:
    try:
        store = open_store(db_path)
    except ArchiveError as e:
        _fail(e)
    return ArchiveService(
        store,
        export_sink=FileExportSink(export_dir or config.EXPORT_DIR),
        viewer=RichViewer(console),
        aliases=load_aliases(config.ALIASES_PATH),
    )

def _run(coro):
    # Errors from the archive end the command, never the whole process with a traceback
    try:
        return asyncio.run(coro)
    except (ArchiveError, OSError) as e:
        _fail(e)

@app.callback()
def main(log_level: str = typer.Option(config.LOG_LEVEL, help="Logging level")):
    setup_logging(log_level)

@app.command("import")
def import_cmd(paths: List[str] = typer.Argument(..., help="Glob(s) for .json or .txt transcripts"),
               title: Optional[str] = typer.Option(None, help="Title to use instead of the file's own")):
    files: List[Path] = []
    for p in paths:
        files += [Path(x) for x in sorted(Path().glob(p))]
    if not files:
        console.print("[red]No files matched[/red]")
        raise typer.Exit(1)

    service = _service()

    async def _archive_all():
        for f in tqdm(files, desc="Archiving", disable=len(files) < 2):
            try:
                file_title, entries, report = parse_file(str(f))
            except (OSError, ValueError, KeyError, TypeError) as e:
                console.print(f"[yellow]Skipping {f.name}: {e}[/yellow]")
                continue
            meta = await service.save_to_history(entries, report, title or file_title)
            console.print(f"Archived {f.name}: {meta.caption_count} captions → {meta.chunk_count} chunk(s) as {meta.id}")

    _run(_archive_all())

@app.command("list-sessions")
def list_sessions_cmd():
    service = _service()
    sessions = _run(service.list_sessions())
    if not sessions:
        console.print("No saved sessions.")
        raise typer.Exit(0)
    table = Table(title="Sessions")
    table.add_column("Session ID", style="cyan")
    table.add_column("Title", style="magenta")
    table.add_column("Date")
    table.add_column("Duration")
    table.add_column("Captions", justify="right")
    table.add_column("Speakers", justify="right")
    for s in sessions:
        table.add_row(s.id, s.title, f"{s.date} {s.time}", s.duration, str(s.caption_count), str(len(s.speakers)))
    console.print(table)
    stats = _run(service.storage_stats())
    console.print(f"Storage: {stats.used_mb}MB / {stats.quota_mb}MB ({stats.percent_used}%)")

@app.command()
def view(session_id: str):
    _run(_service().view_session(session_id))

@app.command()
def export(session_id: str,
           format: Optional[str] = typer.Option(None, "--format", "-f", help="txt|md|html|doc"),
           out_dir: Optional[str] = typer.Option(None, help="Directory to write into")):
    result = _run(_service(export_dir=out_dir).export_session(session_id, format))
    console.print(f"[green]Exported {result.location}[/green] ({result.mime_type})")

@app.command()
def render(path: str,
           format: Optional[str] = typer.Option(None, "--format", "-f", help="txt|md|html|doc"),
           out_dir: Optional[str] = typer.Option(None, help="Directory to write into")):
    """Export a transcript file directly, without archiving it."""
    try:
        title, entries, report = parse_file(path)
    except (OSError, ValueError, KeyError, TypeError) as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(1)
    result = _run(_service(export_dir=out_dir).download(entries, report, title, format))
    console.print(f"[green]Exported {result.location}[/green] ({result.mime_type})")

@app.command()
def delete(session_id: str, yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    if not yes and not typer.confirm("Delete this session? This cannot be undone."):
        raise typer.Exit(0)
    meta = _run(_service().delete_session(session_id))
    console.print(f"Deleted {meta.id} ({meta.title})")

@app.command()
def clear(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    if not yes and not typer.confirm("Delete ALL saved sessions? This cannot be undone."):
        raise typer.Exit(0)
    count = _run(_service().clear_all())
    console.print(f"Deleted {count} session(s)")

@app.command()
def stats():
    s = _run(_service().storage_stats())
    console.print(f"Storage: {s.used_mb}MB / {s.quota_mb}MB ({s.percent_used}%)")

@app.command()
def serve(host: str = "127.0.0.1", port: int = 8000):
    import uvicorn
    uvicorn.run("server.app:app", host=host, port=port)

if __name__ == "__main__":
    app()
