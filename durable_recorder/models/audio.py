"""Audio-related data models."""

from dataclasses import dataclass, field
from typing import List

import numpy as np


@dataclass
class DecodedAudio:
    """PCM produced by an audio decoder.

    ``samples`` is either a 1-D array (mono) or a 2-D ``(frames, channels)``
    array of floats in [-1, 1].
    """
    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_ms(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / self.sample_rate * 1000.0

    def mono(self) -> np.ndarray:
        """Average all channels down to a single float32 channel."""
        data = np.asarray(self.samples, dtype=np.float32)
        if data.ndim == 1:
            return data
        return data.mean(axis=1, dtype=np.float32)


@dataclass(frozen=True)
class CumulativeAnomaly:
    """A chunk whose decoded audio covers far more than its own window."""
    chunk_id: str
    seq: int
    expected_duration_ms: float
    decoded_duration_ms: float


@dataclass
class RangeExtraction:
    """Mono PCM for a session time window plus its WAV encoding."""
    session_id: str
    start_ms: float
    end_ms: float
    samples: np.ndarray
    sample_rate: int
    duration_ms: float
    waveform_bytes: bytes
    strategy: str  # "stitched", "cumulative" or "empty"
    chunk_ids: List[str] = field(default_factory=list)
    anomalies: List[CumulativeAnomaly] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.samples.size == 0


@dataclass
class AudioSlice:
    """Exportable audio for a chunk, snip or whole session."""
    kind: str  # "chunk", "snip" or "session"
    session_id: str
    start_ms: float
    end_ms: float
    duration_ms: float
    mime_type: str
    data: bytes
    suggested_filename: str
