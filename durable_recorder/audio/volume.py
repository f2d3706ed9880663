"""Per-chunk loudness profiling."""

import logging
import math
import time
from typing import Optional, Tuple

import numpy as np

from ..config import AnalysisSettings, VolumeSettings
from ..models.chunk import Chunk, VolumeProfile
from .decoder import AbstractAudioDecoder, decode_chunk

logger = logging.getLogger(__name__)


def compute_rms_frames(samples: np.ndarray, sample_rate: int, frame_duration_ms: int) -> np.ndarray:
    """Split mono samples into fixed-duration frames and return one RMS per frame.

    The last frame may be shorter than the others; its RMS is taken over the
    samples it actually holds.
    """
    frame_samples = max(1, int(round(frame_duration_ms / 1000.0 * sample_rate)))
    total = int(samples.shape[0])
    if total == 0:
        return np.zeros(0, dtype=np.float64)

    data = samples.astype(np.float64, copy=False)
    full_frames = total // frame_samples
    rms = np.sqrt(np.mean(np.square(data[:full_frames * frame_samples].reshape(full_frames, frame_samples)),
                          axis=1)) if full_frames else np.zeros(0, dtype=np.float64)

    remainder = data[full_frames * frame_samples:]
    if remainder.size:
        rms = np.append(rms, math.sqrt(float(np.mean(np.square(remainder)))))
    return rms


def normalize_frames(rms: np.ndarray, target: float = 0.92) -> Tuple[np.ndarray, float]:
    """Scale frames so the loudest maps to ``target`` and clamp to 1.

    Returns:
        Tuple of (normalized frames, scaling factor)
    """
    peak = float(rms.max()) if rms.size else 0.0
    scaling_factor = target / peak if peak > 0 else 1.0
    return np.minimum(rms * scaling_factor, 1.0), scaling_factor


class VolumeProfileAnalyzer:
    """Decodes one chunk and reduces it to normalized per-frame loudness."""

    def __init__(self,
                 decoder: AbstractAudioDecoder,
                 analysis: Optional[AnalysisSettings] = None,
                 volume: Optional[VolumeSettings] = None):
        """Initialize the analyzer.

        Args:
            decoder: Audio decode capability
            analysis: Framing settings (frame duration)
            volume: Normalization settings
        """
        self.decoder = decoder
        self.analysis = analysis or AnalysisSettings()
        self.volume = volume or VolumeSettings()

    async def analyze(self, chunk: Chunk, data: bytes,
                      frame_duration_ms: Optional[int] = None) -> VolumeProfile:
        """Compute the volume profile for one chunk.

        Args:
            chunk: Chunk metadata (id, session, seq and captured timestamps)
            data: Bytes to decode, already prefixed with any init segment
            frame_duration_ms: Frame size override

        Returns:
            VolumeProfile with normalized frames and summary stats

        Raises:
            DecodeFailure: If the chunk cannot be decoded
        """
        frame_ms = frame_duration_ms or self.analysis.frame_duration_ms
        decoded = await decode_chunk(self.decoder, chunk, data)

        mono = decoded.mono()
        rms = compute_rms_frames(mono, decoded.sample_rate, frame_ms)
        normalized, scaling_factor = normalize_frames(rms, self.volume.normalization_target)

        frame_count = int(normalized.size)
        max_normalized = float(normalized.max()) if frame_count else 0.0
        average_normalized = float(normalized.mean()) if frame_count else 0.0

        profile = VolumeProfile(
            chunk_id=chunk.id,
            session_id=chunk.session_id,
            seq=chunk.seq,
            chunk_start_ms=chunk.start_ms,
            chunk_end_ms=chunk.end_ms,
            duration_ms=mono.shape[0] / decoded.sample_rate * 1000.0,
            sample_rate=decoded.sample_rate,
            frame_duration_ms=frame_ms,
            frames=[float(v) for v in normalized],
            max_normalized=max_normalized,
            average_normalized=average_normalized,
            scaling_factor=scaling_factor,
            created_at=time.time() * 1000.0,
        )
        logger.debug(f"Volume profile for {chunk.id}: {frame_count} frames, "
                     f"{profile.duration_ms:.1f}ms, max={max_normalized:.3f}, avg={average_normalized:.3f}")
        return profile
