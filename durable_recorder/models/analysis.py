"""Data models for loudness analysis and segmentation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .session import SessionTiming


class BreakReason(Enum):
    """Why a segment ends where it does."""
    PAUSE = "pause"
    END = "end"


@dataclass(frozen=True)
class VolumeFrame:
    """A fixed-duration slice of session audio reduced to one loudness value."""
    index: int
    start_ms: float
    end_ms: float
    rms: float
    normalized: float


@dataclass(frozen=True)
class QuietRegion:
    """A run of frames at or below the silence threshold."""
    index: int
    start_frame: int
    end_frame: int  # Inclusive
    start_ms: float
    end_ms: float
    duration_ms: float
    min_rms: float
    max_rms: float
    average_rms: float
    center_ms: float
    normalized_min: float = 0.0
    normalized_max: float = 0.0


@dataclass(frozen=True)
class SegmentBoundary:
    """A proposed cut point placed at the center of a quiet region."""
    index: int
    position_ms: float
    preceding_duration_ms: float
    quiet_region_index: int
    score: float
    reason: str = "pause"


@dataclass(frozen=True)
class Segment:
    """A contiguous sub-range of a session used for playback and transcription."""
    index: int
    start_ms: float
    end_ms: float
    duration_ms: float
    break_reason: BreakReason
    boundary_index: Optional[int] = None
    transcription: Optional[str] = None


@dataclass(frozen=True)
class TimelineStats:
    """Summary numbers for a session timeline."""
    sample_rate: int
    total_duration_ms: float
    frame_duration_ms: int
    frame_count: int
    max_rms: float
    min_rms: float
    noise_floor: float
    threshold: float
    normalized_threshold: float


@dataclass(frozen=True)
class SessionTimeline:
    """Frames, quiet regions and proposed segments for a whole session."""
    session_id: str
    frames: List[VolumeFrame] = field(default_factory=list)
    quiet_regions: List[QuietRegion] = field(default_factory=list)
    boundaries: List[SegmentBoundary] = field(default_factory=list)
    segments: List[Segment] = field(default_factory=list)
    stats: Optional[TimelineStats] = None
    verification: Optional[SessionTiming] = None
    cache_key: Optional[tuple] = None

    @property
    def is_empty(self) -> bool:
        return not self.frames
