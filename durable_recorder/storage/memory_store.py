"""In-memory session store."""

import logging
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..models.analysis import Segment
from ..models.chunk import Chunk, TimingStatus, VolumeProfile
from ..models.session import Session
from .base import AbstractSessionStore

logger = logging.getLogger(__name__)


class InMemorySessionStore(AbstractSessionStore):
    """Dictionary-backed store for tests and embedding."""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}
        self.chunks: Dict[str, Chunk] = {}
        self.chunk_bytes: Dict[str, bytes] = {}
        self.volume_profiles: Dict[str, VolumeProfile] = {}
        self.segments: Dict[str, List[Segment]] = {}
        self.timing_writes = 0

    async def create_session(self, session: Session) -> None:
        self.sessions[session.id] = session

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    async def update_session(self, session_id: str, **patch: Any) -> Optional[Session]:
        existing = self.sessions.get(session_id)
        if existing is None:
            return None
        patch.setdefault('updated_at', time.time() * 1000.0)
        updated = replace(existing, **patch)
        self.sessions[session_id] = updated
        return updated

    async def list_sessions(self) -> List[Session]:
        return sorted(self.sessions.values(), key=lambda s: s.started_at, reverse=True)

    async def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.segments.pop(session_id, None)
        for chunk_id in [c.id for c in self.chunks.values() if c.session_id == session_id]:
            self.chunks.pop(chunk_id, None)
            self.chunk_bytes.pop(chunk_id, None)
            self.volume_profiles.pop(chunk_id, None)

    async def append_chunk(self, chunk: Chunk, data: bytes) -> Session:
        session = self.sessions.get(chunk.session_id)
        if session is None:
            raise KeyError(f"Unknown session: {chunk.session_id}")
        stored = replace(chunk, byte_length=len(data), created_at=chunk.created_at or time.time() * 1000.0)
        self.chunks[chunk.id] = stored
        self.chunk_bytes[chunk.id] = data
        updated = replace(
            session,
            chunk_count=session.chunk_count + 1,
            total_bytes=session.total_bytes + len(data),
            duration_ms=max(session.duration_ms, chunk.end_ms - session.started_at),
            updated_at=time.time() * 1000.0,
            timing_status=TimingStatus.UNVERIFIED,
        )
        self.sessions[session.id] = updated
        return updated

    async def get_chunk_metadata(self, session_id: str) -> List[Chunk]:
        return sorted((c for c in self.chunks.values() if c.session_id == session_id), key=lambda c: c.seq)

    async def get_chunk_bytes(self, chunk_id: str) -> Optional[bytes]:
        return self.chunk_bytes.get(chunk_id)

    async def update_chunk_timings(self, session_id: str, chunks: List[Chunk]) -> None:
        for chunk in chunks:
            if chunk.id not in self.chunks:
                raise KeyError(f"Unknown chunk: {chunk.id}")
        for chunk in chunks:
            existing = self.chunks[chunk.id]
            self.chunks[chunk.id] = replace(
                existing,
                start_ms=chunk.start_ms,
                end_ms=chunk.end_ms,
                verified_duration_ms=chunk.verified_duration_ms,
                timing_status=chunk.timing_status,
            )
        self.timing_writes += 1

    async def get_volume_profile(self, chunk_id: str) -> Optional[VolumeProfile]:
        return self.volume_profiles.get(chunk_id)

    async def list_volume_profiles(self, session_id: str) -> List[VolumeProfile]:
        return sorted((p for p in self.volume_profiles.values() if p.session_id == session_id),
                      key=lambda p: p.seq)

    async def put_volume_profile(self, profile: VolumeProfile) -> None:
        self.volume_profiles[profile.chunk_id] = profile

    async def list_segments(self, session_id: str) -> List[Segment]:
        return sorted(self.segments.get(session_id, []), key=lambda s: s.index)

    async def append_segments(self, session_id: str, segments: List[Segment]) -> None:
        self.segments.setdefault(session_id, []).extend(segments)

    async def storage_totals(self) -> Dict[str, Any]:
        return {
            "total_bytes": sum(len(data) for data in self.chunk_bytes.values()),
            "session_count": len(self.sessions),
            "chunk_count": len(self.chunks),
        }
