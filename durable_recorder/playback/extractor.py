"""Exact time-range extraction across stored chunks.

Chunks are decoded independently and stitched by their session-relative
offsets. Some containers emit fragments whose decoded audio starts from the
beginning of the stream instead of the fragment's own window; such
"cumulative" chunks are detected heuristically and sliced directly by
absolute offset instead of being stitched.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy import signal

from ..audio.decoder import AbstractAudioDecoder, decode_chunk, prepare_chunk_bytes
from ..audio.wav import encode_wav_pcm16_mono
from ..cache import InflightRegistry, VersionedCache
from ..config import ExtractionSettings
from ..errors import DecodeFailure, SessionNotFound
from ..models.audio import CumulativeAnomaly, DecodedAudio, RangeExtraction
from ..models.chunk import Chunk
from ..models.session import Session
from ..storage.base import AbstractSessionStore

logger = logging.getLogger(__name__)

# Heuristic thresholds for cumulative chunks. Tuned against observed container
# behaviour; treat detection as best effort.
CUMULATIVE_DURATION_RATIO = 1.5
CUMULATIVE_COVERAGE_RATIO = 0.8
EPOCH_THRESHOLD_MS = 1e12


@dataclass(frozen=True)
class ChunkIndexEntry:
    """A playable chunk and its session-relative offset range."""
    chunk: Chunk
    start_offset_ms: float
    end_offset_ms: float

    @property
    def expected_duration_ms(self) -> float:
        return max(0.0, self.end_offset_ms - self.start_offset_ms)

    def overlaps(self, start_ms: float, end_ms: float) -> bool:
        return self.end_offset_ms > start_ms and self.start_offset_ms < end_ms


def build_chunk_index(session: Optional[Session], chunks: List[Chunk],
                      epoch_threshold_ms: float = EPOCH_THRESHOLD_MS) -> List[ChunkIndexEntry]:
    """Convert chunk timestamps into session-relative offsets.

    The base is the session start (or the earliest chunk start when there is
    no session); it is only subtracted when it looks like an epoch timestamp.
    Control chunks are left out since they hold no playable audio.
    """
    ordered = sorted(chunks, key=lambda c: c.seq)
    if not ordered:
        return []

    base = session.started_at if session is not None and session.started_at else min(c.start_ms for c in ordered)
    shift = base if base > epoch_threshold_ms else 0

    index = []
    for chunk in ordered:
        if chunk.is_control_chunk:
            continue
        start = chunk.start_ms - shift
        end = max(start, chunk.end_ms - shift)
        index.append(ChunkIndexEntry(chunk=chunk, start_offset_ms=float(start), end_offset_ms=float(end)))
    return index


def slice_samples(samples: np.ndarray, sample_rate: int, start_ms: float, end_ms: float) -> np.ndarray:
    """Slice ``[start_ms, end_ms)`` from a buffer whose first sample is at 0ms."""
    start_sample = max(0, int(math.floor(start_ms / 1000.0 * sample_rate)))
    end_sample = min(samples.shape[0], int(math.ceil(end_ms / 1000.0 * sample_rate)))
    if end_sample <= start_sample:
        return np.zeros(0, dtype=np.float32)
    return samples[start_sample:end_sample]


def _resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    if source_rate == target_rate or samples.size == 0:
        return samples
    divisor = math.gcd(source_rate, target_rate)
    return signal.resample_poly(samples, target_rate // divisor, source_rate // divisor).astype(np.float32)


class RangeAudioExtractor:
    """Resolves a session time window to exact stitched mono samples."""

    def __init__(self, store: AbstractSessionStore, decoder: AbstractAudioDecoder,
                 settings: Optional[ExtractionSettings] = None):
        """Initialize the extractor.

        Args:
            store: Session store holding chunk metadata and bytes
            decoder: Audio decode capability
            settings: Detection thresholds; defaults match the module constants
        """
        self.store = store
        self.decoder = decoder
        self.settings = settings or ExtractionSettings(
            cumulative_duration_ratio=CUMULATIVE_DURATION_RATIO,
            cumulative_coverage_ratio=CUMULATIVE_COVERAGE_RATIO,
            epoch_threshold_ms=EPOCH_THRESHOLD_MS,
        )
        # session id -> (session version, chunk id -> mono audio)
        self._decoded: VersionedCache[Dict[str, DecodedAudio]] = VersionedCache(
            max_entries=self.settings.decoded_cache_sessions)
        self._inflight: InflightRegistry[Optional[DecodedAudio]] = InflightRegistry("decode")

    async def load_index(self, session_id: str) -> Tuple[Session, List[ChunkIndexEntry], List[Chunk]]:
        """Fetch the session and build its chunk offset index.

        Returns:
            Tuple of (session, playable index entries, all chunks)
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        chunks = await self.store.get_chunk_metadata(session_id)
        return session, build_chunk_index(session, chunks, self.settings.epoch_threshold_ms), chunks

    def is_cumulative(self, entry: ChunkIndexEntry, decoded: DecodedAudio, window_end_ms: float) -> bool:
        """Whether a decoded chunk carries audio from well before its own window."""
        decoded_ms = decoded.duration_ms
        return (decoded_ms > entry.expected_duration_ms * self.settings.cumulative_duration_ratio
                and decoded_ms > window_end_ms * self.settings.cumulative_coverage_ratio)

    @staticmethod
    def decode_cache_key(session: Session) -> tuple:
        return (
            session.chunk_count,
            session.updated_at,
            session.duration_ms,
            session.timing_status.value,
        )

    def clear_session(self, session_id: str) -> None:
        """Drop decoded audio held for a session."""
        self._decoded.discard(session_id)

    async def decode_entry(self, session: Session, entry: ChunkIndexEntry,
                           chunks: List[Chunk]) -> Optional[DecodedAudio]:
        """Decode one chunk to mono, sharing work between concurrent callers.

        Decoded chunks are kept per session and dropped together as soon as
        the session changes. Returns None when the chunk has no bytes or
        fails to decode.
        """
        key = self.decode_cache_key(session)
        decoded = self._decoded.get(session.id, key)
        if decoded is None:
            decoded = {}
            self._decoded.put(session.id, key, decoded)

        chunk = entry.chunk
        audio = decoded.get(chunk.id)
        if audio is None:
            audio = await self._inflight.run((chunk.id, chunk.byte_length), lambda: self._decode(chunk, chunks))
            if audio is not None:
                decoded[chunk.id] = audio
        return audio

    async def _decode(self, chunk: Chunk, chunks: List[Chunk]) -> Optional[DecodedAudio]:
        data = await self.store.get_chunk_bytes(chunk.id)
        if not data:
            logger.warning(f"No stored bytes for chunk {chunk.id}; skipping")
            return None

        control = next((c for c in chunks if c.is_control_chunk), None)
        control_data = await self.store.get_chunk_bytes(control.id) if control is not None \
            and self.decoder.needs_init_segment else None
        payload = prepare_chunk_bytes(self.decoder, chunk, data, control, control_data)

        try:
            decoded = await decode_chunk(self.decoder, chunk, payload)
        except DecodeFailure as e:
            logger.warning(f"Skipping chunk during extraction: {e}")
            return None

        return DecodedAudio(samples=decoded.mono(), sample_rate=decoded.sample_rate, channels=1)

    async def extract_range(self, session_id: str, start_ms: float, end_ms: float) -> RangeExtraction:
        """Extract ``[start_ms, end_ms)`` of a session as mono PCM plus WAV bytes.

        Args:
            session_id: Session identifier
            start_ms: Window start, session-relative
            end_ms: Window end, session-relative

        Returns:
            RangeExtraction; ``strategy`` is "empty" when nothing overlaps
        """
        safe_start = max(0.0, float(start_ms))
        safe_end = max(safe_start, float(end_ms))

        session, index, chunks = await self.load_index(session_id)
        if safe_end <= safe_start:
            return self._empty(session_id, safe_start)
        overlapping = [entry for entry in index if entry.overlaps(safe_start, safe_end)]
        if not overlapping:
            logger.debug(f"No chunks overlap {safe_start:.0f}-{safe_end:.0f}ms in session {session_id}")
            return self._empty(session_id, safe_start)

        decoded: List[Tuple[ChunkIndexEntry, DecodedAudio]] = []
        for entry in overlapping:
            audio = await self.decode_entry(session, entry, chunks)
            if audio is not None:
                decoded.append((entry, audio))
        if not decoded:
            return self._empty(session_id, safe_start)

        anomalies = [
            CumulativeAnomaly(
                chunk_id=entry.chunk.id,
                seq=entry.chunk.seq,
                expected_duration_ms=entry.expected_duration_ms,
                decoded_duration_ms=audio.duration_ms,
            )
            for entry, audio in decoded
            if self.is_cumulative(entry, audio, safe_end)
        ]

        if anomalies:
            return self._extract_cumulative(session_id, safe_start, safe_end, decoded, anomalies)
        return self._extract_stitched(session_id, safe_start, safe_end, decoded)

    def _extract_cumulative(self, session_id: str, start_ms: float, end_ms: float,
                            decoded: List[Tuple[ChunkIndexEntry, DecodedAudio]],
                            anomalies: List[CumulativeAnomaly]) -> RangeExtraction:
        flagged = {a.chunk_id for a in anomalies}
        candidates = [(entry, audio) for entry, audio in decoded if entry.chunk.id in flagged]
        covering = [(entry, audio) for entry, audio in candidates if audio.duration_ms >= end_ms]
        if covering:
            entry, audio = min(covering, key=lambda pair: pair[0].chunk.seq)
        else:
            entry, audio = max(candidates, key=lambda pair: pair[1].frame_count)

        logger.info(f"Cumulative chunk anomaly in session {session_id}: slicing {entry.chunk.id} "
                    f"({audio.duration_ms:.0f}ms decoded vs {entry.expected_duration_ms:.0f}ms expected) "
                    f"at {start_ms:.0f}-{end_ms:.0f}ms")
        samples = slice_samples(audio.samples, audio.sample_rate, start_ms, end_ms)
        return self._result(session_id, start_ms, samples, audio.sample_rate, "cumulative",
                            [entry.chunk.id], anomalies)

    def _extract_stitched(self, session_id: str, start_ms: float, end_ms: float,
                          decoded: List[Tuple[ChunkIndexEntry, DecodedAudio]]) -> RangeExtraction:
        target_rate = decoded[0][1].sample_rate
        pieces = []
        for entry, audio in decoded:
            local_start = max(start_ms, entry.start_offset_ms) - entry.start_offset_ms
            local_end = min(end_ms, entry.end_offset_ms) - entry.start_offset_ms
            start_sample = max(0, int(round(local_start / 1000.0 * audio.sample_rate)))
            end_sample = min(audio.frame_count, int(round(local_end / 1000.0 * audio.sample_rate)))
            if end_sample <= start_sample:
                continue
            piece = audio.samples[start_sample:end_sample]
            if audio.sample_rate != target_rate:
                logger.warning(f"Chunk {entry.chunk.id} decoded at {audio.sample_rate}Hz, "
                               f"resampling to {target_rate}Hz")
                piece = _resample(piece, audio.sample_rate, target_rate)
            pieces.append(piece)

        samples = np.concatenate(pieces).astype(np.float32, copy=False) if pieces \
            else np.zeros(0, dtype=np.float32)
        return self._result(session_id, start_ms, samples, target_rate, "stitched",
                            [entry.chunk.id for entry, _ in decoded], [])

    def _result(self, session_id: str, start_ms: float, samples: np.ndarray, sample_rate: int,
                strategy: str, chunk_ids: List[str], anomalies: List[CumulativeAnomaly]) -> RangeExtraction:
        duration_ms = samples.shape[0] / sample_rate * 1000.0 if sample_rate > 0 else 0.0
        return RangeExtraction(
            session_id=session_id,
            start_ms=start_ms,
            end_ms=start_ms + duration_ms,
            samples=samples,
            sample_rate=sample_rate,
            duration_ms=duration_ms,
            waveform_bytes=encode_wav_pcm16_mono(samples, sample_rate),
            strategy=strategy,
            chunk_ids=chunk_ids,
            anomalies=anomalies,
        )

    def _empty(self, session_id: str, start_ms: float) -> RangeExtraction:
        return self._result(session_id, start_ms, np.zeros(0, dtype=np.float32),
                            self.settings.fallback_sample_rate, "empty", [], [])
