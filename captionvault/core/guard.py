import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class GuardState:
    last_handled_key: Optional[str] = None
    in_progress: bool = False


def auto_save_key(title: Optional[str], recording_start_time: Union[str, int, float, None]) -> str:
    return f"{title}_{recording_start_time}"


class AutoSaveGuard:
    """Collapses repeated "meeting ended" signals into a single save.

    The check-and-set in ``run`` happens before the first await, so under
    asyncio a second signal for the same meeting always sees the first one's
    state. State lives only in this process.
    """

    def __init__(self, state: Optional[GuardState] = None):
        self.state = state if state is not None else GuardState()

    def should_discard(self, key: str) -> bool:
        return self.state.in_progress or self.state.last_handled_key == key

    async def run(self, key: str, action: Callable[[], Awaitable[None]]) -> bool:
        """Run ``action`` unless ``key`` is already handled or a save is underway.

        Returns True when the action ran to completion. If it raises, the key
        is forgotten so the same meeting can be retried, and the error
        propagates.
        """
        if self.should_discard(key):
            logger.info("Auto-save already in progress or completed for %s, skipping", key)
            return False
        self.state.in_progress = True
        self.state.last_handled_key = key
        try:
            await action()
        except Exception:
            self.state.last_handled_key = None
            raise
        finally:
            self.state.in_progress = False
        return True

    def reset(self) -> None:
        self.state.last_handled_key = None
        self.state.in_progress = False
        logger.info("New capture session started, auto-save state reset")
