"""File-backed session store for chunk blobs and derived metadata."""

import os
import json
import logging
import shutil
import time
from pathlib import Path
from dataclasses import asdict, replace
from typing import Dict, Any, Optional, List

from ..models.analysis import BreakReason, Segment
from ..models.chunk import Chunk, TimingStatus, VolumeProfile
from ..models.session import Session, SessionStatus
from .base import AbstractSessionStore

logger = logging.getLogger(__name__)

SESSION_INFO_FILE = "session_info.json"
CHUNKS_FILE = "chunks.json"
PROFILES_FILE = "volume_profiles.json"
SEGMENTS_FILE = "segments.json"
CHUNK_DIR = "chunks"


def _session_to_dict(session: Session) -> Dict[str, Any]:
    data = asdict(session)
    data['timing_status'] = session.timing_status.value
    data['status'] = session.status.value
    return data


def _session_from_dict(data: Dict[str, Any]) -> Session:
    data = dict(data)
    data['timing_status'] = TimingStatus(data.get('timing_status', TimingStatus.UNVERIFIED.value))
    data['status'] = SessionStatus(data.get('status', SessionStatus.READY.value))
    return Session(**data)


def _chunk_to_dict(chunk: Chunk) -> Dict[str, Any]:
    data = asdict(chunk)
    data['timing_status'] = chunk.timing_status.value
    return data


def _chunk_from_dict(data: Dict[str, Any]) -> Chunk:
    data = dict(data)
    data['timing_status'] = TimingStatus(data.get('timing_status', TimingStatus.UNVERIFIED.value))
    return Chunk(**data)


def _segment_to_dict(segment: Segment) -> Dict[str, Any]:
    data = asdict(segment)
    data['break_reason'] = segment.break_reason.value
    return data


def _segment_from_dict(data: Dict[str, Any]) -> Segment:
    data = dict(data)
    data['break_reason'] = BreakReason(data['break_reason'])
    return Segment(**data)


class FileSessionStore(AbstractSessionStore):
    """Stores each session in its own directory under ``<data_dir>/sessions``.

    Layout per session::

        session_info.json
        chunks.json             chunk metadata ordered by seq
        chunks/<chunk_id>.bin   raw chunk bytes
        volume_profiles.json    profiles keyed by chunk id
        segments.json           append-only segment list

    JSON files are written to a temporary file and moved into place, so a
    multi-chunk timing update lands as a single write.
    """

    def __init__(self, data_dir: str = "./data"):
        """Initialize file store with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.sessions_dir = self.data_dir / "sessions"
        self.logs_dir = self.data_dir / "logs"

        # Create directory structure
        self._ensure_directories()

        # chunk id -> session id, filled lazily
        self._chunk_owner: Dict[str, str] = {}

        logger.info(f"FileSessionStore initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.data_dir, self.sessions_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def get_session_path(self, session_id: str) -> Path:
        """Get full path to session directory."""
        return self.sessions_dir / session_id

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _write_json(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, path)

    def _load_chunks(self, session_id: str) -> List[Chunk]:
        raw = self._read_json(self.get_session_path(session_id) / CHUNKS_FILE, [])
        chunks = [_chunk_from_dict(item) for item in raw]
        for chunk in chunks:
            self._chunk_owner[chunk.id] = session_id
        return sorted(chunks, key=lambda c: c.seq)

    def _save_chunks(self, session_id: str, chunks: List[Chunk]) -> None:
        ordered = sorted(chunks, key=lambda c: c.seq)
        self._write_json(self.get_session_path(session_id) / CHUNKS_FILE, [_chunk_to_dict(c) for c in ordered])

    def _owner_of(self, chunk_id: str) -> Optional[str]:
        owner = self._chunk_owner.get(chunk_id)
        if owner is not None:
            return owner
        for session_path in self.sessions_dir.iterdir():
            if session_path.is_dir() and (session_path / CHUNK_DIR / f"{chunk_id}.bin").exists():
                self._chunk_owner[chunk_id] = session_path.name
                return session_path.name
        return None

    async def create_session(self, session: Session) -> None:
        session_path = self.get_session_path(session.id)
        (session_path / CHUNK_DIR).mkdir(parents=True, exist_ok=True)
        self._write_json(session_path / SESSION_INFO_FILE, _session_to_dict(session))
        logger.info(f"Created session directory: {session_path}")

    async def get_session(self, session_id: str) -> Optional[Session]:
        info_file = self.get_session_path(session_id) / SESSION_INFO_FILE
        if not info_file.exists():
            logger.debug(f"Session info file not found: {info_file}")
            return None
        return _session_from_dict(self._read_json(info_file, {}))

    async def update_session(self, session_id: str, **patch: Any) -> Optional[Session]:
        existing = await self.get_session(session_id)
        if existing is None:
            return None
        patch.setdefault('updated_at', time.time() * 1000.0)
        updated = replace(existing, **patch)
        self._write_json(self.get_session_path(session_id) / SESSION_INFO_FILE, _session_to_dict(updated))
        return updated

    async def list_sessions(self) -> List[Session]:
        sessions = []
        for path in self.sessions_dir.iterdir():
            if path.is_dir() and (path / SESSION_INFO_FILE).exists():
                sessions.append(_session_from_dict(self._read_json(path / SESSION_INFO_FILE, {})))
        sessions.sort(key=lambda s: s.started_at, reverse=True)
        logger.debug(f"Found {len(sessions)} sessions")
        return sessions

    async def delete_session(self, session_id: str) -> None:
        session_path = self.get_session_path(session_id)
        if session_path.exists():
            shutil.rmtree(session_path)
            logger.info(f"Deleted session: {session_path}")
        self._chunk_owner = {k: v for k, v in self._chunk_owner.items() if v != session_id}

    async def append_chunk(self, chunk: Chunk, data: bytes) -> Session:
        session = await self.get_session(chunk.session_id)
        if session is None:
            raise KeyError(f"Unknown session: {chunk.session_id}")

        session_path = self.get_session_path(chunk.session_id)
        blob_path = session_path / CHUNK_DIR / f"{chunk.id}.bin"
        blob_path.parent.mkdir(parents=True, exist_ok=True)
        with open(blob_path, 'wb') as f:
            f.write(data)

        stored = replace(chunk, byte_length=len(data), created_at=chunk.created_at or time.time() * 1000.0)
        chunks = [c for c in self._load_chunks(chunk.session_id) if c.id != chunk.id]
        chunks.append(stored)
        self._save_chunks(chunk.session_id, chunks)
        self._chunk_owner[chunk.id] = chunk.session_id

        updated = await self.update_session(
            chunk.session_id,
            chunk_count=session.chunk_count + 1,
            total_bytes=session.total_bytes + len(data),
            duration_ms=max(session.duration_ms, chunk.end_ms - session.started_at),
            timing_status=TimingStatus.UNVERIFIED,
        )
        logger.debug(f"Chunk saved: {blob_path} ({len(data)} bytes)")
        return updated

    async def get_chunk_metadata(self, session_id: str) -> List[Chunk]:
        return self._load_chunks(session_id)

    async def get_chunk_bytes(self, chunk_id: str) -> Optional[bytes]:
        session_id = self._owner_of(chunk_id)
        if session_id is None:
            return None
        blob_path = self.get_session_path(session_id) / CHUNK_DIR / f"{chunk_id}.bin"
        if not blob_path.exists():
            return None
        with open(blob_path, 'rb') as f:
            return f.read()

    async def update_chunk_timings(self, session_id: str, chunks: List[Chunk]) -> None:
        existing = {c.id: c for c in self._load_chunks(session_id)}
        for chunk in chunks:
            if chunk.id not in existing:
                raise KeyError(f"Unknown chunk: {chunk.id}")
            existing[chunk.id] = replace(
                existing[chunk.id],
                start_ms=chunk.start_ms,
                end_ms=chunk.end_ms,
                verified_duration_ms=chunk.verified_duration_ms,
                timing_status=chunk.timing_status,
            )
        self._save_chunks(session_id, list(existing.values()))
        logger.debug(f"Updated timing for {len(chunks)} chunk(s) in session {session_id}")

    async def get_volume_profile(self, chunk_id: str) -> Optional[VolumeProfile]:
        session_id = self._owner_of(chunk_id)
        if session_id is None:
            return None
        raw = self._read_json(self.get_session_path(session_id) / PROFILES_FILE, {})
        data = raw.get(chunk_id)
        return VolumeProfile(**data) if data else None

    async def list_volume_profiles(self, session_id: str) -> List[VolumeProfile]:
        raw = self._read_json(self.get_session_path(session_id) / PROFILES_FILE, {})
        return sorted((VolumeProfile(**data) for data in raw.values()), key=lambda p: p.seq)

    async def put_volume_profile(self, profile: VolumeProfile) -> None:
        path = self.get_session_path(profile.session_id) / PROFILES_FILE
        raw = self._read_json(path, {})
        raw[profile.chunk_id] = asdict(profile)
        self._write_json(path, raw)

    async def list_segments(self, session_id: str) -> List[Segment]:
        raw = self._read_json(self.get_session_path(session_id) / SEGMENTS_FILE, [])
        return sorted((_segment_from_dict(item) for item in raw), key=lambda s: s.index)

    async def append_segments(self, session_id: str, segments: List[Segment]) -> None:
        path = self.get_session_path(session_id) / SEGMENTS_FILE
        raw = self._read_json(path, [])
        raw.extend(_segment_to_dict(s) for s in segments)
        self._write_json(path, raw)

    async def storage_totals(self) -> Dict[str, Any]:
        """Get storage usage statistics."""
        total_size = 0
        session_count = 0
        chunk_files = 0

        for session_path in self.sessions_dir.iterdir():
            if session_path.is_dir():
                session_count += 1
                for file_path in session_path.rglob("*"):
                    if file_path.is_file():
                        total_size += file_path.stat().st_size
                        if file_path.suffix == '.bin':
                            chunk_files += 1

        return {
            "total_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "session_count": session_count,
            "chunk_count": chunk_files,
            "data_directory": str(self.data_dir),
        }
