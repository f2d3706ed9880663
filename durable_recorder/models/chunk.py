"""Chunk and volume profile data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class TimingStatus(Enum):
    """Whether a chunk's timestamps have been rebuilt from verified durations."""
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


@dataclass(frozen=True)
class Chunk:
    """One independently persisted unit of captured audio."""
    id: str
    session_id: str
    seq: int
    start_ms: int      # Absolute (epoch) or session-relative, as captured
    end_ms: int
    byte_length: int
    verified_duration_ms: Optional[int] = None
    timing_status: TimingStatus = TimingStatus.UNVERIFIED
    is_control_chunk: bool = False  # Container setup bytes, no playable audio
    created_at: float = 0.0

    @property
    def span_ms(self) -> int:
        """Duration implied by the stored timestamps."""
        return max(0, self.end_ms - self.start_ms)


@dataclass(frozen=True)
class VolumeProfile:
    """Normalized per-frame loudness of a single chunk."""
    chunk_id: str
    session_id: str
    seq: int
    chunk_start_ms: int
    chunk_end_ms: int
    duration_ms: float  # Decoded audio duration
    sample_rate: int
    frame_duration_ms: int
    frames: List[float] = field(default_factory=list)
    max_normalized: float = 0.0
    average_normalized: float = 0.0
    scaling_factor: float = 1.0
    created_at: float = 0.0
