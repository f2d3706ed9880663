"""Services layer for durable recorder orchestration."""

from .event_publisher import SessionEventPublisher
from .recording_service import ChunkRecorder
from .session_analysis import SessionAnalysisService
from .slices_service import RecordingSlicesService

__all__ = [
    "SessionEventPublisher",
    "ChunkRecorder",
    "SessionAnalysisService",
    "RecordingSlicesService",
]
