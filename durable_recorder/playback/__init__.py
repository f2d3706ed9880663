"""Time-range extraction and playback slices."""

from .extractor import ChunkIndexEntry, RangeAudioExtractor, build_chunk_index

__all__ = ["ChunkIndexEntry", "RangeAudioExtractor", "build_chunk_index"]
