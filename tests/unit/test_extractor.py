"""Unit tests for time-range extraction."""

import asyncio

import numpy as np
import pytest

from durable_recorder.audio.wav import WAV_HEADER_BYTES
from durable_recorder.config import ExtractionSettings
from durable_recorder.errors import SessionNotFound
from durable_recorder.models.session import Session
from durable_recorder.playback.extractor import RangeAudioExtractor, build_chunk_index

from conftest import (
    SAMPLE_RATE,
    SESSION_START_MS,
    encode_synthetic,
    make_chunk,
    ramp,
    store_session,
)

S = SESSION_START_MS


@pytest.mark.unit
class TestBuildChunkIndex:

    def test_epoch_timestamps_become_relative(self):
        session = Session(id="s1", started_at=S)
        chunks = [
            make_chunk("s1", 0, S, S, is_control_chunk=True),
            make_chunk("s1", 1, S, S + 1000),
            make_chunk("s1", 2, S + 1000, S + 1800),
        ]

        index = build_chunk_index(session, chunks)

        assert [(e.chunk.seq, e.start_offset_ms, e.end_offset_ms) for e in index] == [(1, 0, 1000), (2, 1000, 1800)]
        assert index[1].expected_duration_ms == 800

    def test_relative_timestamps_are_kept(self):
        session = Session(id="s1", started_at=5000)

        index = build_chunk_index(session, [make_chunk("s1", 0, 0, 1000), make_chunk("s1", 1, 1000, 2000)])

        assert [(e.start_offset_ms, e.end_offset_ms) for e in index] == [(0, 1000), (1000, 2000)]

    def test_base_falls_back_to_earliest_chunk(self):
        chunks = [make_chunk("s1", 1, S + 700, S + 900), make_chunk("s1", 0, S + 200, S + 700)]

        index = build_chunk_index(None, chunks)

        assert [(e.start_offset_ms, e.end_offset_ms) for e in index] == [(0, 500), (500, 700)]


@pytest.mark.unit
class TestRangeAudioExtractor:
    """Test cases for RangeAudioExtractor.extract_range."""

    def test_full_range_equals_stitched_chunks(self, memory_store, decoder):
        pieces = [ramp(1000), ramp(500, offset=0.25)]
        asyncio.run(store_session(memory_store, "s1", pieces))
        extractor = RangeAudioExtractor(memory_store, decoder)

        result = asyncio.run(extractor.extract_range("s1", 0, 1500))

        assert result.strategy == "stitched"
        assert result.anomalies == []
        assert result.chunk_ids == ["s1-c0", "s1-c1"]
        assert result.sample_rate == SAMPLE_RATE
        assert np.array_equal(result.samples, np.concatenate(pieces))
        assert result.duration_ms == pytest.approx(1500)
        assert len(result.waveform_bytes) == WAV_HEADER_BYTES + 2 * result.samples.shape[0]

    def test_partial_range_spanning_a_chunk_edge(self, memory_store, decoder):
        pieces = [ramp(1000), ramp(500, offset=0.25)]
        asyncio.run(store_session(memory_store, "s1", pieces))

        result = asyncio.run(RangeAudioExtractor(memory_store, decoder).extract_range("s1", 250, 1250))

        expected = np.concatenate(pieces)[2000:10000]
        assert np.array_equal(result.samples, expected)
        assert result.start_ms == 250
        assert result.end_ms == pytest.approx(1250)

    def test_cumulative_chunk_is_sliced_by_absolute_offset(self, memory_store, decoder):
        # The middle chunk claims [2000, 4000) but decodes to 5s of audio from the session start
        cumulative = ramp(5000, offset=0.1)
        pieces = [ramp(2000), cumulative, ramp(2000, offset=0.3)]
        asyncio.run(store_session(memory_store, "s1", pieces, spans_ms=[2000, 2000, 2000]))

        result = asyncio.run(RangeAudioExtractor(memory_store, decoder).extract_range("s1", 2000, 4500))

        assert result.strategy == "cumulative"
        assert [(a.chunk_id, a.expected_duration_ms, a.decoded_duration_ms) for a in result.anomalies] == [
            ("s1-c1", 2000, pytest.approx(5000)),
        ]
        assert result.chunk_ids == ["s1-c1"]
        assert np.array_equal(result.samples, cumulative[16000:36000])
        assert result.duration_ms == pytest.approx(2500)

    def test_normal_chunks_are_not_flagged(self, memory_store, decoder):
        asyncio.run(store_session(memory_store, "s1", [ramp(2000), ramp(2000)]))

        result = asyncio.run(RangeAudioExtractor(memory_store, decoder).extract_range("s1", 0, 4000))

        assert result.strategy == "stitched"
        assert result.anomalies == []

    def test_range_outside_audio_is_empty(self, memory_store, decoder):
        asyncio.run(store_session(memory_store, "s1", [ramp(1000)]))
        extractor = RangeAudioExtractor(memory_store, decoder)

        result = asyncio.run(extractor.extract_range("s1", 5000, 6000))

        assert result.strategy == "empty"
        assert result.is_empty
        assert result.duration_ms == 0
        assert result.sample_rate == 48000
        assert len(result.waveform_bytes) == WAV_HEADER_BYTES
        assert decoder.calls == []

    def test_inverted_range_is_empty(self, memory_store, decoder):
        asyncio.run(store_session(memory_store, "s1", [ramp(1000)]))

        result = asyncio.run(RangeAudioExtractor(memory_store, decoder).extract_range("s1", 800, 200))

        assert result.strategy == "empty"

    def test_undecodable_chunk_is_skipped(self, memory_store, decoder):
        pieces = [ramp(1000), ramp(500)]
        asyncio.run(store_session(memory_store, "s1", pieces))
        memory_store.chunk_bytes["s1-c1"] = b"BAD-payload"

        result = asyncio.run(RangeAudioExtractor(memory_store, decoder).extract_range("s1", 0, 1500))

        assert result.chunk_ids == ["s1-c0"]
        assert np.array_equal(result.samples, pieces[0])

    def test_decodes_are_cached_and_shared(self, memory_store, decoder):
        asyncio.run(store_session(memory_store, "s1", [ramp(1000), ramp(1000)]))
        extractor = RangeAudioExtractor(memory_store, decoder)

        async def extract_concurrently():
            return await asyncio.gather(
                extractor.extract_range("s1", 0, 2000),
                extractor.extract_range("s1", 500, 1500),
            )

        first, second = asyncio.run(extract_concurrently())
        asyncio.run(extractor.extract_range("s1", 0, 2000))

        assert len(decoder.calls) == 2
        assert np.array_equal(first.samples[4000:12000], second.samples)

    def test_changed_session_drops_decoded_chunks(self, memory_store, decoder):
        asyncio.run(store_session(memory_store, "s1", [ramp(1000), ramp(1000)]))
        extractor = RangeAudioExtractor(memory_store, decoder)
        asyncio.run(extractor.extract_range("s1", 0, 2000))

        data = encode_synthetic(ramp(1000))
        asyncio.run(memory_store.append_chunk(make_chunk("s1", 2, S + 2000, S + 3000, len(data)), data))
        result = asyncio.run(extractor.extract_range("s1", 0, 3000))

        assert result.samples.shape[0] == 3 * SAMPLE_RATE
        assert len(decoder.calls) == 5
        assert len(extractor._decoded) == 1

    def test_decode_cache_keeps_most_recent_sessions(self, memory_store, decoder):
        extractor = RangeAudioExtractor(memory_store, decoder, ExtractionSettings(decoded_cache_sessions=2))
        for session_id in ("s1", "s2", "s3"):
            asyncio.run(store_session(memory_store, session_id, [ramp(500)]))
            asyncio.run(extractor.extract_range(session_id, 0, 500))

        assert len(extractor._decoded) == 2
        assert "s1" not in extractor._decoded
        assert "s3" in extractor._decoded

    def test_cleared_sessions_release_decoded_audio(self, memory_store, decoder):
        extractor = RangeAudioExtractor(memory_store, decoder)
        session_ids = [f"s{n}" for n in range(5)]
        for session_id in session_ids:
            asyncio.run(store_session(memory_store, session_id, [ramp(500)]))
            asyncio.run(extractor.extract_range(session_id, 0, 500))

        assert len(extractor._decoded) == extractor.settings.decoded_cache_sessions

        for session_id in session_ids:
            asyncio.run(memory_store.delete_session(session_id))
            extractor.clear_session(session_id)

        assert len(extractor._decoded) == 0

    def test_mismatched_sample_rate_is_resampled(self, memory_store, decoder):
        asyncio.run(store_session(memory_store, "s1", [ramp(1000)]))
        fast = np.zeros(8000, dtype=np.float32)
        data = encode_synthetic(fast, 16000)
        asyncio.run(memory_store.append_chunk(make_chunk("s1", 1, S + 1000, S + 1500, len(data)), data))

        result = asyncio.run(RangeAudioExtractor(memory_store, decoder).extract_range("s1", 0, 1500))

        assert result.sample_rate == SAMPLE_RATE
        assert result.samples.shape[0] == 12000

    def test_unknown_session(self, memory_store, decoder):
        with pytest.raises(SessionNotFound):
            asyncio.run(RangeAudioExtractor(memory_store, decoder).extract_range("missing", 0, 100))
