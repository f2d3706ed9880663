"""Recording service that persists captured chunks in capture order."""

import asyncio
import logging
import random
import string
import time
from datetime import datetime
from typing import Dict, Optional

from ..errors import SessionNotFound
from ..models.chunk import Chunk
from ..models.events import ChunkPersistedEvent
from ..models.session import Session, SessionStatus
from ..storage.base import AbstractSessionStore
from .event_publisher import SessionEventPublisher

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    """Timestamp-based session id with a random suffix."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{timestamp}_{random_suffix}"


class ChunkRecorder:
    """Accepts chunks from a capture pipeline and stores them durably.

    Appends to one session are serialized so each chunk's ``seq`` is assigned
    and persisted in the order the chunks were handed over. Different
    sessions do not block each other.
    """

    def __init__(self, store: AbstractSessionStore, publisher: Optional[SessionEventPublisher] = None):
        """Initialize the recorder.

        Args:
            store: Session store to persist into
            publisher: Optional publisher notified after each chunk is stored
        """
        self.store = store
        self.publisher = publisher
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def create_session(self, started_at: Optional[int] = None,
                             mime_type: Optional[str] = None,
                             title: str = "",
                             session_id: Optional[str] = None) -> Session:
        """Create and store a new recording session.

        Args:
            started_at: Capture start in epoch milliseconds (defaults to now)
            mime_type: Container type of the chunks that will follow
            title: Human-readable title
            session_id: Explicit id; generated when omitted

        Returns:
            The stored Session
        """
        now_ms = int(time.time() * 1000)
        session = Session(
            id=session_id or new_session_id(),
            started_at=started_at if started_at is not None else now_ms,
            updated_at=float(now_ms),
            mime_type=mime_type,
            title=title,
        )
        await self.store.create_session(session)
        logger.info(f"Created new session: {session.id}")
        return session

    async def append_chunk(self, session_id: str, data: bytes, start_ms: int, end_ms: int,
                           is_control_chunk: bool = False) -> Chunk:
        """Persist one captured chunk as the next in the session's sequence.

        Args:
            session_id: Session identifier
            data: Encoded chunk bytes
            start_ms: Captured start timestamp (epoch milliseconds)
            end_ms: Captured end timestamp (epoch milliseconds)
            is_control_chunk: True for the container init segment

        Returns:
            The stored Chunk

        Raises:
            SessionNotFound: If the session does not exist
        """
        async with self._lock_for(session_id):
            session = await self.store.get_session(session_id)
            if session is None:
                raise SessionNotFound(session_id)

            seq = session.chunk_count
            chunk = Chunk(
                id=f"{session_id}_chunk_{seq:05d}",
                session_id=session_id,
                seq=seq,
                start_ms=int(start_ms),
                end_ms=max(int(start_ms), int(end_ms)),
                byte_length=len(data),
                is_control_chunk=is_control_chunk,
                created_at=time.time() * 1000.0,
            )
            await self.store.append_chunk(chunk, data)

        logger.debug(f"Stored chunk {chunk.id}: {len(data)} bytes, {chunk.span_ms}ms captured")
        if self.publisher:
            self.publisher.publish_chunk_persisted(ChunkPersistedEvent(chunk=chunk))
        return chunk

    async def finish_session(self, session_id: str) -> Session:
        """Mark a session as no longer recording.

        Raises:
            SessionNotFound: If the session does not exist
        """
        async with self._lock_for(session_id):
            session = await self.store.update_session(session_id, status=SessionStatus.READY)
        if session is None:
            raise SessionNotFound(session_id)
        self._locks.pop(session_id, None)
        logger.info(f"Session finished: {session_id} ({session.chunk_count} chunks, {session.duration_ms}ms)")
        return session
