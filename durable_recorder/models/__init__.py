"""Data models for the durable recorder engine."""

from .chunk import Chunk, TimingStatus, VolumeProfile
from .session import Session, SessionStatus, SessionTiming
from .analysis import (
    BreakReason,
    VolumeFrame,
    QuietRegion,
    SegmentBoundary,
    Segment,
    TimelineStats,
    SessionTimeline,
)
from .audio import DecodedAudio, CumulativeAnomaly, RangeExtraction, AudioSlice
from .events import ChunkPersistedEvent, TimingVerifiedEvent, SegmentsAppendedEvent

__all__ = [
    "Chunk",
    "TimingStatus",
    "VolumeProfile",
    "Session",
    "SessionStatus",
    "SessionTiming",
    # Analysis models
    "BreakReason",
    "VolumeFrame",
    "QuietRegion",
    "SegmentBoundary",
    "Segment",
    "TimelineStats",
    "SessionTimeline",
    # Audio models
    "DecodedAudio",
    "CumulativeAnomaly",
    "RangeExtraction",
    "AudioSlice",
    # Events
    "ChunkPersistedEvent",
    "TimingVerifiedEvent",
    "SegmentsAppendedEvent",
]
