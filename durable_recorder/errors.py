"""Error taxonomy for the durable recorder engine."""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models.session import SessionTiming


class RecorderError(Exception):
    """Base class for engine errors."""


class SessionNotFound(RecorderError):
    """The requested session does not exist in storage."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class DecodeFailure(RecorderError):
    """One chunk's bytes could not be decoded into PCM."""

    def __init__(self, chunk_id: str, reason: str):
        self.chunk_id = chunk_id
        self.reason = reason
        super().__init__(f"Failed to decode chunk {chunk_id}: {reason}")


class IncompleteTiming(RecorderError):
    """Timing could not be verified because chunks lack a duration."""

    def __init__(self, session_id: str, missing_chunk_ids: List[str],
                 timing: Optional["SessionTiming"] = None):
        self.session_id = session_id
        self.missing_chunk_ids = list(missing_chunk_ids)
        self.timing = timing
        super().__init__(
            f"Session {session_id} has {len(self.missing_chunk_ids)} chunk(s) without "
            f"a verified duration: {', '.join(self.missing_chunk_ids)}"
        )


class NoAudioAvailable(RecorderError):
    """A whole-session export found no playable chunks."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No audio available yet for session {session_id}")
