"""Unit tests for RecorderConfig."""

import os
from pathlib import Path

import pytest
import yaml

from durable_recorder.config import RecorderConfig


def write_config(directory, data) -> str:
    path = Path(directory) / "config.yaml"
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f)
    return str(path)


@pytest.mark.unit
class TestRecorderConfig:
    """Test cases for RecorderConfig."""

    def test_defaults(self):
        config = RecorderConfig()

        assert config.analysis.frame_duration_ms == 50
        assert config.analysis.min_quiet_duration_ms == 600
        assert (config.analysis.min_segment_ms, config.analysis.target_segment_ms,
                config.analysis.max_segment_ms) == (5_000, 10_000, 60_000)
        assert config.analysis.live_tail_margin_ms == 15_000
        assert config.volume.normalization_target == 0.92
        assert config.extraction.cumulative_duration_ratio == 1.5
        assert config.extraction.fallback_sample_rate == 48_000
        assert config.get('analysis.min_segment_ms') is None

    def test_loads_yaml_sections(self, temp_data_dir):
        path = write_config(temp_data_dir, {
            'analysis': {'min_segment_ms': 2000, 'threshold_multiplier': 2.0},
            'extraction': {'fallback_sample_rate': 16000},
        })

        config = RecorderConfig(path)

        assert config.analysis.min_segment_ms == 2000
        assert config.analysis.threshold_multiplier == 2.0
        assert config.analysis.target_segment_ms == 10_000
        assert config.extraction.fallback_sample_rate == 16000
        assert config.get('analysis.min_segment_ms') == 2000
        assert config.get('analysis.missing.key', 'fallback') == 'fallback'

    def test_relative_paths_resolve_against_config_file(self, temp_data_dir):
        path = write_config(temp_data_dir, {
            'storage': {'data_directory': 'recordings'},
            'logging': {'file_path': 'logs/recorder.log'},
        })

        config = RecorderConfig(path)

        assert config.storage.data_directory == str(Path(temp_data_dir) / 'recordings')
        assert config.logging.file_path == str(Path(temp_data_dir) / 'logs/recorder.log')
        assert os.path.isabs(config.get_data_directory())

    def test_absolute_paths_are_kept(self, temp_data_dir):
        absolute = str(Path(temp_data_dir).absolute() / 'elsewhere')
        path = write_config(temp_data_dir, {'storage': {'data_directory': absolute}})

        assert RecorderConfig(path).storage.data_directory == absolute

    def test_empty_file_uses_defaults(self, temp_data_dir):
        path = Path(temp_data_dir) / "empty.yaml"
        path.write_text("")

        assert RecorderConfig(str(path)).analysis.min_segment_ms == 5_000

    def test_missing_file(self, temp_data_dir):
        with pytest.raises(FileNotFoundError):
            RecorderConfig(str(Path(temp_data_dir) / "nope.yaml"))

    def test_invalid_values_rejected(self, temp_data_dir):
        path = write_config(temp_data_dir, {'analysis': {'frame_duration_ms': 0}})

        with pytest.raises(ValueError, match="analysis"):
            RecorderConfig(path)

    def test_top_level_must_be_mapping(self, temp_data_dir):
        path = Path(temp_data_dir) / "list.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ValueError):
            RecorderConfig(str(path))
