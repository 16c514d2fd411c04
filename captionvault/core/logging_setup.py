import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import LOG_LEVEL


def setup_logging(level: Optional[str] = None, console: Optional[Console] = None) -> None:
    """Route all captionvault (and uvicorn) logging through one rich handler."""
    handler = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    handler.name = "captionvault_rich"

    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))
    root.handlers = [h for h in root.handlers if h.name != handler.name]
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.propagate = True
