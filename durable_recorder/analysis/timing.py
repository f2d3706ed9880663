"""Deterministic chunk timing reconciliation."""

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional

from ..errors import SessionNotFound
from ..models.chunk import Chunk, TimingStatus
from ..models.session import SessionTiming
from ..storage.base import AbstractSessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SequencedChunkDuration:
    """A chunk's place in the sequence and its verified duration."""
    id: str
    seq: int
    duration_ms: float
    is_control_chunk: bool = False


@dataclass(frozen=True)
class SequencedChunkTiming:
    id: str
    seq: int
    duration_ms: int
    start_ms: int
    end_ms: int
    is_control_chunk: bool = False


def _safe_duration(value: Optional[float]) -> int:
    """Coerce missing, non-finite or negative durations to zero."""
    if value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number <= 0:
        return 0
    return int(round(number))


def compute_sequential_timings(base_start_ms: float,
                               durations: List[SequencedChunkDuration]) -> List[SequencedChunkTiming]:
    """Rebuild start/end timestamps for a chunk sequence from verified durations.

    Chunks must already be in ``seq`` order. Each chunk starts where the
    previous one ended; control chunks occupy zero time and do not advance
    the offset.
    """
    rolling_offset = 0
    timings = []
    for chunk in durations:
        duration = 0 if chunk.is_control_chunk else _safe_duration(chunk.duration_ms)
        start_ms = int(round(base_start_ms + rolling_offset))
        end_ms = start_ms + duration
        rolling_offset += duration
        timings.append(SequencedChunkTiming(
            id=chunk.id,
            seq=chunk.seq,
            duration_ms=duration,
            start_ms=start_ms,
            end_ms=end_ms,
            is_control_chunk=chunk.is_control_chunk,
        ))
    return timings


class ChunkTimingReconciler:
    """Rewrites a session's chunk timestamps from verified per-chunk durations.

    A pass is all-or-nothing: if any chunk has neither a verified duration nor
    a usable volume profile, nothing is written and the offending chunk ids
    are reported so the caller can regenerate the profiles and retry.
    """

    def __init__(self, store: AbstractSessionStore):
        self.store = store

    async def verify(self, session_id: str) -> SessionTiming:
        """Run one verification pass for a session.

        Args:
            session_id: Session identifier

        Returns:
            SessionTiming describing the outcome

        Raises:
            SessionNotFound: If the session does not exist
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        chunks = sorted(await self.store.get_chunk_metadata(session_id), key=lambda c: c.seq)
        base_start_ms = session.started_at

        durations: List[SequencedChunkDuration] = []
        missing: List[str] = []
        for chunk in chunks:
            duration = await self._resolve_duration(chunk)
            if duration is None:
                missing.append(chunk.id)
                continue
            durations.append(SequencedChunkDuration(
                id=chunk.id,
                seq=chunk.seq,
                duration_ms=duration,
                is_control_chunk=chunk.is_control_chunk,
            ))

        if missing:
            logger.info(f"Timing verification for {session_id} incomplete: "
                        f"{len(missing)} chunk(s) lack a duration")
            return SessionTiming(
                session_id=session_id,
                status=TimingStatus.UNVERIFIED,
                missing_chunk_ids=missing,
                total_verified_duration_ms=sum(_safe_duration(d.duration_ms) for d in durations),
                base_start_ms=base_start_ms,
                chunks=chunks,
                session=session,
            )

        timings = compute_sequential_timings(base_start_ms, durations)
        by_id = {chunk.id: chunk for chunk in chunks}
        verified_chunks: List[Chunk] = []
        changed: List[Chunk] = []
        for timing in timings:
            current = by_id[timing.id]
            updated = replace(
                current,
                start_ms=timing.start_ms,
                end_ms=timing.end_ms,
                verified_duration_ms=timing.duration_ms,
                timing_status=TimingStatus.VERIFIED,
            )
            verified_chunks.append(updated)
            if updated != current:
                changed.append(updated)

        total_ms = sum(t.duration_ms for t in timings)

        if changed:
            await self.store.update_chunk_timings(session_id, changed)
            logger.info(f"Verified timing for {len(changed)} chunk(s) in session {session_id} "
                        f"(total {total_ms}ms)")

        patch = {}
        if total_ms > session.duration_ms:
            patch['duration_ms'] = total_ms
        if session.timing_status != TimingStatus.VERIFIED:
            patch['timing_status'] = TimingStatus.VERIFIED
        if patch:
            session = await self.store.update_session(session_id, **patch) or session

        return SessionTiming(
            session_id=session_id,
            status=TimingStatus.VERIFIED,
            updated_chunk_ids=[c.id for c in changed],
            total_verified_duration_ms=total_ms,
            base_start_ms=base_start_ms,
            chunks=verified_chunks,
            session=session,
        )

    async def _resolve_duration(self, chunk: Chunk) -> Optional[float]:
        """Duration from verified metadata, else from the stored volume profile."""
        if chunk.is_control_chunk:
            return 0
        if chunk.verified_duration_ms is not None:
            return chunk.verified_duration_ms
        profile = await self.store.get_volume_profile(chunk.id)
        if profile is not None and profile.duration_ms is not None and math.isfinite(profile.duration_ms):
            return profile.duration_ms
        return None
