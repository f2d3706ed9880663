"""Session analysis orchestration: timing, volume profiles, timeline and segments."""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from ..analysis.segments import SegmentCatalog
from ..analysis.timeline import SessionTimelineBuilder
from ..analysis.timing import ChunkTimingReconciler
from ..audio.decoder import AbstractAudioDecoder, prepare_chunk_bytes
from ..audio.volume import VolumeProfileAnalyzer
from ..cache import InflightRegistry, VersionedCache
from ..config import RecorderConfig
from ..errors import DecodeFailure, SessionNotFound
from ..models.analysis import Segment, SessionTimeline
from ..models.chunk import Chunk, VolumeProfile
from ..models.events import SegmentsAppendedEvent, TimingVerifiedEvent
from ..models.session import Session, SessionTiming
from ..storage.base import AbstractSessionStore
from .event_publisher import SessionEventPublisher

logger = logging.getLogger(__name__)


class SessionAnalysisService:
    """Coordinates verification, profile regeneration and segmentation for sessions.

    Concurrent requests for the same session share one verification pass and
    one timeline build; concurrent requests for the same chunk share one
    profile computation. Timelines are cached per session and reused while
    the session's chunk count, update time, duration, timing status and
    newest profile are unchanged.
    """

    def __init__(self,
                 store: AbstractSessionStore,
                 decoder: AbstractAudioDecoder,
                 config: Optional[RecorderConfig] = None,
                 publisher: Optional[SessionEventPublisher] = None):
        """Initialize the analysis service.

        Args:
            store: Session store
            decoder: Audio decode capability used to regenerate profiles
            config: Recorder configuration; defaults apply when omitted
            publisher: Optional pub/sub publisher for timing and segment events
        """
        self.store = store
        self.config = config or RecorderConfig()
        self.publisher = publisher

        self.reconciler = ChunkTimingReconciler(store)
        self.analyzer = VolumeProfileAnalyzer(decoder, self.config.analysis, self.config.volume)
        self.builder = SessionTimelineBuilder(self.config.analysis)
        self.catalog = SegmentCatalog(store, self.config.analysis)

        self._verifications: InflightRegistry[SessionTiming] = InflightRegistry("verify")
        self._profiles: InflightRegistry[Optional[VolumeProfile]] = InflightRegistry("profile")
        self._builds: InflightRegistry[SessionTimeline] = InflightRegistry("timeline")
        self._segment_updates: InflightRegistry[List[Segment]] = InflightRegistry("segments")
        self._timelines: VersionedCache[SessionTimeline] = VersionedCache()

    async def verify_timing(self, session_id: str) -> SessionTiming:
        """Run (or join) a timing verification pass for a session."""
        return await self._verifications.run(session_id, lambda: self._verify(session_id))

    async def _verify(self, session_id: str) -> SessionTiming:
        timing = await self.reconciler.verify(session_id)
        if timing.updated_chunk_ids and self.publisher:
            self.publisher.publish_timing_verified(TimingVerifiedEvent(session_id=session_id, timing=timing))
        return timing

    async def ensure_timing(self, session_id: str) -> SessionTiming:
        """Verify timing, regenerating missing volume profiles once if needed.

        Returns:
            The final SessionTiming; still UNVERIFIED if some chunks could not
            be decoded.
        """
        timing = await self.verify_timing(session_id)
        if timing.is_verified or not timing.missing_chunk_ids:
            return timing

        logger.info(f"Regenerating {len(timing.missing_chunk_ids)} volume profile(s) for session {session_id}")
        generated = await self.regenerate_profiles(session_id, timing.missing_chunk_ids)
        if not generated:
            return timing
        return await self.verify_timing(session_id)

    async def regenerate_profiles(self, session_id: str, chunk_ids: List[str]) -> List[VolumeProfile]:
        """Compute and store volume profiles for the given chunks.

        Chunks that have no bytes or fail to decode are logged and skipped.

        Returns:
            The profiles that were produced
        """
        chunks = await self.store.get_chunk_metadata(session_id)
        wanted = set(chunk_ids)
        control = next((c for c in chunks if c.is_control_chunk), None)
        control_data = await self.store.get_chunk_bytes(control.id) if control is not None \
            and self.analyzer.decoder.needs_init_segment else None

        profiles = []
        for chunk in chunks:
            if chunk.id not in wanted or chunk.is_control_chunk:
                continue
            profile = await self._profiles.run(
                chunk.id, lambda c=chunk: self._generate_profile(c, control, control_data))
            if profile is not None:
                profiles.append(profile)
        return profiles

    async def _generate_profile(self, chunk: Chunk, control: Optional[Chunk],
                                control_data: Optional[bytes]) -> Optional[VolumeProfile]:
        data = await self.store.get_chunk_bytes(chunk.id)
        if not data:
            logger.warning(f"Chunk {chunk.id} has no stored bytes; cannot build a volume profile")
            return None

        payload = prepare_chunk_bytes(self.analyzer.decoder, chunk, data, control, control_data)
        try:
            profile = await self.analyzer.analyze(chunk, payload)
        except DecodeFailure as e:
            logger.warning(f"Volume profile skipped: {e}")
            return None

        await self.store.put_volume_profile(profile)
        return profile

    @staticmethod
    def timeline_cache_key(session: Session, profiles: List[VolumeProfile]) -> tuple:
        latest_profile = max((p.created_at for p in profiles), default=0.0)
        return (
            session.chunk_count,
            session.updated_at,
            session.duration_ms,
            session.timing_status.value,
            latest_profile,
        )

    async def build_timeline(self, session_id: str, force_refresh: bool = False) -> SessionTimeline:
        """Return the session timeline, reusing the cached one when still current.

        Args:
            session_id: Session identifier
            force_refresh: Skip the cache lookup

        Returns:
            SessionTimeline. When timing cannot be verified the timeline is
            empty and carries the failed verification.

        Raises:
            SessionNotFound: If the session does not exist
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        if not force_refresh:
            profiles = await self.store.list_volume_profiles(session_id)
            cached = self._timelines.get(session_id, self.timeline_cache_key(session, profiles))
            if cached is not None:
                logger.debug(f"Timeline cache hit for session {session_id}")
                return cached

        return await self._builds.run(session_id, lambda: self._build_timeline(session_id))

    async def _build_timeline(self, session_id: str) -> SessionTimeline:
        timing = await self.ensure_timing(session_id)
        if not timing.is_verified:
            logger.warning(f"Timeline for {session_id} unavailable: "
                           f"{len(timing.missing_chunk_ids)} chunk(s) still lack a duration")
            return SessionTimeline(session_id=session_id, verification=timing)

        profiles = await self.store.list_volume_profiles(session_id)
        by_chunk: Dict[str, VolumeProfile] = {p.chunk_id: p for p in profiles}
        lost = [c.id for c in timing.chunks if not c.is_control_chunk and c.id not in by_chunk]
        if lost:
            logger.info(f"Rebuilding {len(lost)} lost volume profile(s) for session {session_id}")
            await self.regenerate_profiles(session_id, lost)
            profiles = await self.store.list_volume_profiles(session_id)
            by_chunk = {p.chunk_id: p for p in profiles}
        timeline = self.builder.build(session_id, timing.chunks, by_chunk, timing)

        session = await self.store.get_session(session_id) or timing.session
        key = self.timeline_cache_key(session, profiles)
        timeline = replace(timeline, cache_key=key)
        self._timelines.put(session_id, key, timeline)
        return timeline

    async def list_or_extend_segments(self, session_id: str) -> List[Segment]:
        """Return the session's segments, appending any newly closed ones first."""
        return await self._segment_updates.run(session_id, lambda: self._extend_segments(session_id))

    async def _extend_segments(self, session_id: str) -> List[Segment]:
        timeline = await self.build_timeline(session_id)
        existing = await self.store.list_segments(session_id)
        if timeline.is_empty or timeline.stats is None:
            return existing

        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        segments = await self.catalog.extend(session, timeline.segments, timeline.stats.total_duration_ms)
        added = segments[len(existing):]
        if added and self.publisher:
            self.publisher.publish_segments_appended(SegmentsAppendedEvent(session_id=session_id, segments=added))
        return segments
