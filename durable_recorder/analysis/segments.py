"""Append-only segment catalog."""

import logging
from typing import List, Optional

from ..config import AnalysisSettings
from ..models.analysis import BreakReason, Segment
from ..models.session import Session
from ..storage.base import AbstractSessionStore

logger = logging.getLogger(__name__)


class SegmentCatalog:
    """Persists segment proposals without ever rewriting stored segments.

    Stored segments stay contiguous: each new segment starts where the last
    stored one ended. While a session is still recording, only closed
    pause-terminated segments are stored, and only once the unsegmented tail
    is longer than ``min_segment_ms + live_tail_margin_ms``. The trailing
    end segment is stored after recording stops.
    """

    def __init__(self, store: AbstractSessionStore, settings: Optional[AnalysisSettings] = None):
        self.store = store
        self.settings = settings or AnalysisSettings()

    def plan(self, existing: List[Segment], proposals: List[Segment],
             total_duration_ms: float, is_recording: bool) -> List[Segment]:
        """Work out which segments to append, without touching storage."""
        settings = self.settings
        next_index = max((s.index for s in existing), default=-1) + 1
        covered_ms = max((s.end_ms for s in existing), default=0.0)
        tail_ms = total_duration_ms - covered_ms

        if tail_ms <= 0:
            return []
        if is_recording and tail_ms <= settings.min_segment_ms + settings.live_tail_margin_ms:
            return []

        live_edge_ms = total_duration_ms - settings.live_tail_margin_ms if is_recording else total_duration_ms
        additions: List[Segment] = []
        start_ms = covered_ms

        for proposal in proposals:
            if proposal.break_reason != BreakReason.PAUSE:
                continue
            cut_ms = proposal.end_ms
            if cut_ms <= start_ms or cut_ms > live_edge_ms:
                continue
            if cut_ms - start_ms < settings.min_segment_ms:
                continue
            additions.append(Segment(
                index=next_index + len(additions),
                start_ms=start_ms,
                end_ms=cut_ms,
                duration_ms=cut_ms - start_ms,
                break_reason=BreakReason.PAUSE,
                boundary_index=proposal.boundary_index,
            ))
            start_ms = cut_ms

        if not is_recording and start_ms < total_duration_ms:
            additions.append(Segment(
                index=next_index + len(additions),
                start_ms=start_ms,
                end_ms=total_duration_ms,
                duration_ms=total_duration_ms - start_ms,
                break_reason=BreakReason.END,
            ))

        return additions

    async def extend(self, session: Session, proposals: List[Segment],
                     total_duration_ms: float) -> List[Segment]:
        """Append new segments for a session and return the full stored list.

        Args:
            session: Session the proposals belong to
            proposals: Segments proposed by the timeline builder
            total_duration_ms: Verified total duration of the session

        Returns:
            All stored segments ordered by index
        """
        existing = await self.store.list_segments(session.id)
        additions = self.plan(existing, proposals, total_duration_ms, session.is_recording)
        if not additions:
            return existing

        await self.store.append_segments(session.id, additions)
        logger.info(f"Appended {len(additions)} segment(s) to session {session.id} "
                    f"(indices {additions[0].index}-{additions[-1].index})")
        return existing + additions
