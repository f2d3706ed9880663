"""Abstract storage boundary for sessions, chunks, volume profiles and segments."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.analysis import Segment
from ..models.chunk import Chunk, VolumeProfile
from ..models.session import Session


class AbstractSessionStore(ABC):
    """Persistent store consumed by the engine.

    Every method is awaitable. Implementations must apply
    ``update_chunk_timings`` and ``append_chunk`` as single atomic writes.
    """

    @abstractmethod
    async def create_session(self, session: Session) -> None:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def update_session(self, session_id: str, **patch: Any) -> Optional[Session]:
        """Apply a partial update and return the new session, or None if missing."""
        pass

    @abstractmethod
    async def list_sessions(self) -> List[Session]:
        """List sessions, most recently started first."""
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def append_chunk(self, chunk: Chunk, data: bytes) -> Session:
        """Store a captured chunk and bump the owning session's counters."""
        pass

    @abstractmethod
    async def get_chunk_metadata(self, session_id: str) -> List[Chunk]:
        """Chunk records for a session ordered by ``seq``."""
        pass

    @abstractmethod
    async def get_chunk_bytes(self, chunk_id: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def update_chunk_timings(self, session_id: str, chunks: List[Chunk]) -> None:
        """Replace the timing fields of several chunks as one unit."""
        pass

    async def update_chunk_timing(self, chunk: Chunk) -> None:
        await self.update_chunk_timings(chunk.session_id, [chunk])

    @abstractmethod
    async def get_volume_profile(self, chunk_id: str) -> Optional[VolumeProfile]:
        pass

    @abstractmethod
    async def list_volume_profiles(self, session_id: str) -> List[VolumeProfile]:
        pass

    @abstractmethod
    async def put_volume_profile(self, profile: VolumeProfile) -> None:
        pass

    @abstractmethod
    async def list_segments(self, session_id: str) -> List[Segment]:
        """Stored segments ordered by index."""
        pass

    @abstractmethod
    async def append_segments(self, session_id: str, segments: List[Segment]) -> None:
        pass

    @abstractmethod
    async def storage_totals(self) -> Dict[str, Any]:
        pass
