class ArchiveError(Exception):
    """Base class for session archive failures."""


class ArchiveCorruptError(ArchiveError):
    """A chunk or attendee blob of an indexed session is missing or unreadable."""

    def __init__(self, session_id: str, reason: str):
        super().__init__(f"Session {session_id} is corrupt: {reason}")
        self.session_id = session_id
        self.reason = reason


class SessionNotFoundError(ArchiveError):
    """The requested session id is not in the index."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class StoreWriteError(ArchiveError):
    """The key-value store rejected a write."""
