"""Pytest configuration and fixtures for durable recorder tests."""

import pytest
import struct
import tempfile
import logging
from typing import List, Optional

import numpy as np

from durable_recorder.audio.decoder import AbstractAudioDecoder
from durable_recorder.config import AnalysisSettings
from durable_recorder.errors import DecodeFailure
from durable_recorder.models.audio import DecodedAudio
from durable_recorder.models.chunk import Chunk, VolumeProfile
from durable_recorder.models.session import Session
from durable_recorder.storage.memory_store import InMemorySessionStore


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SESSION_START_MS = 1_700_000_000_000
SAMPLE_RATE = 8000


def encode_synthetic(samples: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Encode samples for SyntheticDecoder: little-endian rate header then float32 PCM."""
    return struct.pack("<I", sample_rate) + np.asarray(samples, dtype="<f4").tobytes()


class SyntheticDecoder(AbstractAudioDecoder):
    """Decoder double that reads the synthetic format and counts calls."""

    def __init__(self, needs_init_segment: bool = False):
        self.needs_init_segment = needs_init_segment
        self.calls: List[bytes] = []

    async def decode(self, data: bytes) -> DecodedAudio:
        self.calls.append(data)
        if data.startswith(b"BAD"):
            raise DecodeFailure("<bytes>", "corrupt synthetic payload")
        sample_rate = struct.unpack("<I", data[:4])[0]
        samples = np.frombuffer(data[4:], dtype="<f4").astype(np.float32)
        return DecodedAudio(samples=samples, sample_rate=sample_rate, channels=1)


def tone(duration_ms: float, amplitude: float = 0.5, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Constant-amplitude square wave, so every frame has RMS == amplitude."""
    count = int(round(duration_ms / 1000.0 * sample_rate))
    signs = np.where(np.arange(count) % 2 == 0, 1.0, -1.0)
    return (signs * amplitude).astype(np.float32)


def ramp(duration_ms: float, sample_rate: int = SAMPLE_RATE, offset: float = 0.0) -> np.ndarray:
    """Distinct sample values, handy for checking exact stitching."""
    count = int(round(duration_ms / 1000.0 * sample_rate))
    return ((np.arange(count) % 1000) / 2000.0 + offset).astype(np.float32)


def make_chunk(session_id: str, seq: int, start_ms: int, end_ms: int, byte_length: int = 0,
               verified_duration_ms: Optional[int] = None, is_control_chunk: bool = False) -> Chunk:
    return Chunk(
        id=f"{session_id}-c{seq}",
        session_id=session_id,
        seq=seq,
        start_ms=start_ms,
        end_ms=end_ms,
        byte_length=byte_length,
        verified_duration_ms=verified_duration_ms,
        is_control_chunk=is_control_chunk,
    )


def make_profile(chunk: Chunk, duration_ms: float, frames: Optional[List[float]] = None,
                 frame_duration_ms: int = 50, created_at: float = 1.0) -> VolumeProfile:
    frames = frames if frames is not None else []
    return VolumeProfile(
        chunk_id=chunk.id,
        session_id=chunk.session_id,
        seq=chunk.seq,
        chunk_start_ms=chunk.start_ms,
        chunk_end_ms=chunk.end_ms,
        duration_ms=duration_ms,
        sample_rate=SAMPLE_RATE,
        frame_duration_ms=frame_duration_ms,
        frames=frames,
        max_normalized=max(frames) if frames else 0.0,
        average_normalized=sum(frames) / len(frames) if frames else 0.0,
        created_at=created_at,
    )


async def store_session(store: InMemorySessionStore, session_id: str,
                        pieces: List[np.ndarray], sample_rate: int = SAMPLE_RATE,
                        started_at: int = SESSION_START_MS,
                        spans_ms: Optional[List[float]] = None) -> Session:
    """Create a session whose chunks hold ``pieces`` back to back.

    ``spans_ms`` overrides the captured span of each chunk; by default the
    span equals the piece's true duration.
    """
    await store.create_session(Session(id=session_id, started_at=started_at))
    offset = 0.0
    for seq, piece in enumerate(pieces):
        span = spans_ms[seq] if spans_ms is not None else piece.shape[0] / sample_rate * 1000.0
        start = int(round(started_at + offset))
        end = int(round(started_at + offset + span))
        data = encode_synthetic(piece, sample_rate)
        await store.append_chunk(make_chunk(session_id, seq, start, end, len(data)), data)
        offset += span
    return await store.get_session(session_id)


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def memory_store():
    return InMemorySessionStore()


@pytest.fixture
def decoder():
    return SyntheticDecoder()


@pytest.fixture
def small_segments():
    """Analysis settings scaled down for short synthetic timelines."""
    return AnalysisSettings(
        min_quiet_duration_ms=50,
        min_segment_ms=100,
        target_segment_ms=200,
        max_segment_ms=1000,
        live_tail_margin_ms=0,
    )
