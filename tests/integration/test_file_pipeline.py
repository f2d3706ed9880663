"""Integration tests: file-backed sessions from chunk capture through export."""

import asyncio
import io
import logging
import wave
from pathlib import Path

import numpy as np
import pytest
import yaml
from scipy.io import wavfile

from durable_recorder.audio.decoder import WavAudioDecoder
from durable_recorder.audio.wav import WAV_HEADER_BYTES, encode_wav_pcm16_mono
from durable_recorder.config import AnalysisSettings, RecorderConfig
from durable_recorder.main import main
from durable_recorder.models.analysis import BreakReason
from durable_recorder.models.chunk import TimingStatus
from durable_recorder.playback.extractor import RangeAudioExtractor
from durable_recorder.services import ChunkRecorder, RecordingSlicesService, SessionAnalysisService
from durable_recorder.storage.file_manager import FileSessionStore

from conftest import SESSION_START_MS, SAMPLE_RATE, tone

ANALYSIS = {
    'min_quiet_duration_ms': 300,
    'min_segment_ms': 500,
    'target_segment_ms': 1000,
    'max_segment_ms': 10_000,
    'live_tail_margin_ms': 0,
}


def speech_with_pause() -> np.ndarray:
    """1.5s of tone, 1s of silence, 1.5s of tone."""
    return np.concatenate([tone(1500), np.zeros(SAMPLE_RATE, dtype=np.float32), tone(1500)])


def read_wav(data: bytes) -> np.ndarray:
    with wave.open(io.BytesIO(data), 'rb') as wf:
        assert wf.getframerate() == SAMPLE_RATE
        return np.frombuffer(wf.readframes(wf.getnframes()), dtype='<i2').astype(np.float32) / 32768.0


def write_config(directory: str) -> str:
    path = Path(directory) / "recorder.yaml"
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump({
            'analysis': ANALYSIS,
            'storage': {'data_directory': 'data'},
            'logging': {'file_path': 'data/logs/recorder.log', 'console_output': False},
        }, f)
    return str(path)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.integration
class TestFilePipeline:
    """Record, verify, segment and export a session stored on disk."""

    def setup_services(self, data_dir):
        config = RecorderConfig()
        config.analysis = AnalysisSettings.model_validate(ANALYSIS)
        store = FileSessionStore(data_dir)
        decoder = WavAudioDecoder()
        analysis = SessionAnalysisService(store, decoder, config)
        slices = RecordingSlicesService(RangeAudioExtractor(store, decoder), analysis)
        return store, ChunkRecorder(store), analysis, slices

    def record(self, recorder, samples):
        async def scenario():
            session = await recorder.create_session(started_at=SESSION_START_MS, mime_type="audio/wav",
                                                    session_id="meeting")
            for index in range(len(samples) // SAMPLE_RATE):
                piece = samples[index * SAMPLE_RATE:(index + 1) * SAMPLE_RATE]
                start = SESSION_START_MS + index * 1000
                await recorder.append_chunk(session.id, encode_wav_pcm16_mono(piece, SAMPLE_RATE),
                                            start, start + 1000)
            return await recorder.finish_session(session.id)

        return asyncio.run(scenario())

    def test_verify_segment_and_export(self, temp_data_dir):
        store, recorder, analysis, slices = self.setup_services(temp_data_dir)
        samples = speech_with_pause()
        self.record(recorder, samples)

        timing = asyncio.run(analysis.ensure_timing("meeting"))

        assert timing.is_verified
        assert timing.total_verified_duration_ms == 4000
        assert len(asyncio.run(store.list_volume_profiles("meeting"))) == 4

        segments = asyncio.run(analysis.list_or_extend_segments("meeting"))

        assert [(s.start_ms, s.end_ms) for s in segments] == [(0, 2000), (2000, 4000)]
        assert [s.break_reason for s in segments] == [BreakReason.PAUSE, BreakReason.END]

        reopened = FileSessionStore(temp_data_dir)
        assert asyncio.run(reopened.list_segments("meeting")) == segments
        chunks = asyncio.run(reopened.get_chunk_metadata("meeting"))
        assert all(c.timing_status == TimingStatus.VERIFIED for c in chunks)

        export = asyncio.run(slices.export_session("meeting"))
        assert len(export.data) == WAV_HEADER_BYTES + 2 * len(samples)
        assert read_wav(export.data) == pytest.approx(samples, abs=1e-4)

        snip = asyncio.run(slices.extract_snip("meeting", 2))
        assert snip.suggested_filename.endswith("_snip-2000-4000.wav")
        assert snip.duration_ms == pytest.approx(2000)

        middle = asyncio.run(slices.extract_range("meeting", 1000, 3000))
        assert middle.strategy == "stitched"
        assert middle.samples == pytest.approx(samples[SAMPLE_RATE:3 * SAMPLE_RATE], abs=1e-4)

    def test_segments_survive_restart_and_stay_stable(self, temp_data_dir):
        _, recorder, analysis, _ = self.setup_services(temp_data_dir)
        self.record(recorder, speech_with_pause())
        first = asyncio.run(analysis.list_or_extend_segments("meeting"))

        _, _, fresh_analysis, _ = self.setup_services(temp_data_dir)
        second = asyncio.run(fresh_analysis.list_or_extend_segments("meeting"))

        assert second == first


@pytest.mark.integration
class TestCommandLine:
    """Drive the CLI against a temporary data directory."""

    def test_ingest_list_and_export(self, temp_data_dir, restore_logging, capsys):
        config_path = write_config(temp_data_dir)
        wav_path = Path(temp_data_dir) / "talk.wav"
        samples = speech_with_pause()
        wavfile.write(str(wav_path), SAMPLE_RATE, (samples * 32767).astype(np.int16))

        main(["--config", config_path, "ingest", str(wav_path), "--chunk-ms", "1000"])

        store = FileSessionStore(str(Path(temp_data_dir) / "data"))
        sessions = asyncio.run(store.list_sessions())
        assert len(sessions) == 1
        session = sessions[0]
        assert session.chunk_count == 4
        assert session.title == "talk"

        main(["--config", config_path, "sessions"])
        main(["--config", config_path, "segments", session.id])
        output = capsys.readouterr().out
        assert session.id in output
        assert "pause" in output

        out_path = Path(temp_data_dir) / "exports" / "talk.wav"
        main(["--config", config_path, "export", session.id, "-o", str(out_path)])

        assert out_path.stat().st_size == WAV_HEADER_BYTES + 2 * len(samples)

        head_path = Path(temp_data_dir) / "exports" / "nothing.wav"
        main(["--config", config_path, "export", session.id, "-o", str(head_path), "--end", "0"])

        assert head_path.stat().st_size == WAV_HEADER_BYTES

    def test_unknown_session_exits_with_error(self, temp_data_dir, restore_logging, capsys):
        config_path = write_config(temp_data_dir)

        with pytest.raises(SystemExit) as excinfo:
            main(["--config", config_path, "export", "missing", "-o", str(Path(temp_data_dir) / "x.wav")])

        assert excinfo.value.code == 1
        assert "missing" in capsys.readouterr().err
