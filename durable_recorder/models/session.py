"""Session-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .chunk import Chunk, TimingStatus


class SessionStatus(Enum):
    """Lifecycle of a recording session."""
    RECORDING = "recording"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class Session:
    """One continuous recording composed of ordered chunks."""
    id: str
    started_at: int  # Epoch milliseconds
    duration_ms: int = 0
    chunk_count: int = 0
    timing_status: TimingStatus = TimingStatus.UNVERIFIED
    status: SessionStatus = SessionStatus.RECORDING
    updated_at: float = 0.0
    total_bytes: int = 0
    mime_type: Optional[str] = None
    title: str = ""

    @property
    def is_recording(self) -> bool:
        return self.status == SessionStatus.RECORDING


@dataclass(frozen=True)
class SessionTiming:
    """Outcome of one timing verification pass."""
    session_id: str
    status: TimingStatus
    updated_chunk_ids: List[str] = field(default_factory=list)
    missing_chunk_ids: List[str] = field(default_factory=list)
    total_verified_duration_ms: int = 0
    base_start_ms: int = 0
    chunks: List[Chunk] = field(default_factory=list)
    session: Optional[Session] = None

    @property
    def is_verified(self) -> bool:
        return self.status == TimingStatus.VERIFIED
