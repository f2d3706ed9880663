"""Event models for pub/sub notifications about session state."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from .analysis import Segment
from .chunk import Chunk
from .session import SessionTiming


@dataclass
class ChunkPersistedEvent:
    """A captured chunk has been durably stored."""
    chunk: Chunk
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TimingVerifiedEvent:
    """A verification pass rewrote chunk timestamps for a session."""
    session_id: str
    timing: SessionTiming
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SegmentsAppendedEvent:
    """New segments were appended to a session's catalog."""
    session_id: str
    segments: List[Segment]
    timestamp: datetime = field(default_factory=datetime.now)
