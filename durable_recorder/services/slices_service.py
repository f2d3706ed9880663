"""Exportable audio slices: single chunks, snips and whole sessions."""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import IncompleteTiming, NoAudioAvailable
from ..models.audio import AudioSlice, RangeExtraction
from ..models.session import Session, SessionTiming
from ..playback.extractor import RangeAudioExtractor
from .session_analysis import SessionAnalysisService

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"


def filename_stamp(started_at_ms: float) -> str:
    """Filesystem-safe ISO timestamp for a session start."""
    stamp = datetime.fromtimestamp(started_at_ms / 1000.0, tz=timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H-%M-%S-") + f"{stamp.microsecond // 1000:03d}Z"


class RecordingSlicesService:
    """Turns session time ranges into WAV slices ready for playback or download.

    Every slice is cut from reconciled chunk timestamps: timing is verified
    (regenerating missing volume profiles once) before the chunk index is
    built, and a session whose timing cannot be verified is refused.
    """

    def __init__(self, extractor: RangeAudioExtractor, analysis: SessionAnalysisService):
        """Initialize the slices service.

        Args:
            extractor: Range extractor over the session store
            analysis: Analysis service providing the segment list for snips
        """
        self.extractor = extractor
        self.analysis = analysis

    async def verified_timing(self, session_id: str) -> SessionTiming:
        """Verify session timing for extraction.

        Raises:
            IncompleteTiming: If some chunks still lack a duration; carries the
                failed SessionTiming
            SessionNotFound: If the session does not exist
        """
        timing = await self.analysis.ensure_timing(session_id)
        if not timing.is_verified:
            logger.warning(f"Refusing to extract from {session_id}: "
                           f"{len(timing.missing_chunk_ids)} chunk(s) without a verified duration")
            raise IncompleteTiming(session_id, timing.missing_chunk_ids, timing)
        return timing

    def clear_session(self, session_id: str) -> None:
        """Forget decoded audio cached for a session, e.g. after deleting it."""
        self.extractor.clear_session(session_id)

    async def extract_range(self, session_id: str, start_ms: float, end_ms: float) -> RangeExtraction:
        await self.verified_timing(session_id)
        return await self.extractor.extract_range(session_id, start_ms, end_ms)

    async def extract_chunk(self, session_id: str, seq: int) -> Optional[AudioSlice]:
        """Audio for one captured chunk, or None if it is missing or a control chunk.

        Args:
            session_id: Session identifier
            seq: Chunk sequence number (0-based)
        """
        await self.verified_timing(session_id)
        session, index, _chunks = await self.extractor.load_index(session_id)
        entry = next((e for e in index if e.chunk.seq == seq), None)
        if entry is None:
            logger.debug(f"No playable chunk with seq {seq} in session {session_id}")
            return None

        extraction = await self.extractor.extract_range(session_id, entry.start_offset_ms, entry.end_offset_ms)
        if extraction.is_empty:
            return None
        return self._to_slice(
            "chunk", session, extraction,
            f"{filename_stamp(session.started_at)}_chunk-{seq + 1:02d}.wav",
        )

    async def extract_snip(self, session_id: str, snip_number: int) -> Optional[AudioSlice]:
        """Audio for a segment, addressed by 1-based snip number.

        Returns:
            The slice, or None when the snip does not exist yet
        """
        if snip_number < 1:
            return None
        segments = await self.analysis.list_or_extend_segments(session_id)
        if snip_number > len(segments):
            logger.debug(f"Snip {snip_number} not available for {session_id} ({len(segments)} segments)")
            return None

        await self.verified_timing(session_id)
        segment = segments[snip_number - 1]
        extraction = await self.extractor.extract_range(session_id, segment.start_ms, segment.end_ms)
        if extraction.is_empty:
            return None
        session = await self.analysis.store.get_session(session_id)
        return self._to_slice(
            "snip", session, extraction,
            f"{filename_stamp(session.started_at)}_snip-{int(segment.start_ms)}-{int(segment.end_ms)}.wav",
        )

    async def export_session(self, session_id: str) -> AudioSlice:
        """Whole-session WAV export.

        Raises:
            IncompleteTiming: If the session timing cannot be verified
            NoAudioAvailable: If the session has no playable audio
            SessionNotFound: If the session does not exist
        """
        await self.verified_timing(session_id)
        session, index, _chunks = await self.extractor.load_index(session_id)
        if not index:
            raise NoAudioAvailable(session_id)

        total_ms = max(entry.end_offset_ms for entry in index)
        extraction = await self.extractor.extract_range(session_id, 0, total_ms)
        if extraction.is_empty:
            raise NoAudioAvailable(session_id)

        logger.info(f"Exported session {session_id}: {extraction.duration_ms:.0f}ms "
                    f"({extraction.strategy}, {len(extraction.chunk_ids)} chunk(s))")
        return self._to_slice("session", session, extraction, f"{filename_stamp(session.started_at)}_session.wav")

    @staticmethod
    def _to_slice(kind: str, session: Session, extraction: RangeExtraction, filename: str) -> AudioSlice:
        return AudioSlice(
            kind=kind,
            session_id=session.id,
            start_ms=extraction.start_ms,
            end_ms=extraction.end_ms,
            duration_ms=extraction.duration_ms,
            mime_type=WAV_MIME_TYPE,
            data=extraction.waveform_bytes,
            suggested_filename=filename,
        )
