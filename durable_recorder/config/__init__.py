"""YAML configuration loader for the durable recorder."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class AnalysisSettings(BaseModel):
    """Loudness framing, quiet-region and segmentation parameters."""
    frame_duration_ms: int = Field(default=50, gt=0)
    min_quiet_duration_ms: float = Field(default=600, ge=0)
    min_segment_ms: float = Field(default=5_000, ge=0)
    target_segment_ms: float = Field(default=10_000, gt=0)
    max_segment_ms: float = Field(default=60_000, gt=0)
    threshold_multiplier: float = Field(default=1.6, gt=0)
    quiet_percentile: float = Field(default=0.3, ge=0, le=1)
    noise_percentile: float = Field(default=0.12, ge=0, le=1)
    initial_ignore_ms: float = Field(default=120, ge=0)
    peak_threshold_ratio: float = Field(default=0.7, gt=0, le=1)
    live_tail_margin_ms: float = Field(default=15_000, ge=0)


class VolumeSettings(BaseModel):
    """Per-chunk normalization."""
    normalization_target: float = Field(default=0.92, gt=0, le=1)


class ExtractionSettings(BaseModel):
    """Range extraction and cumulative-chunk detection thresholds."""
    cumulative_duration_ratio: float = Field(default=1.5, gt=1)
    cumulative_coverage_ratio: float = Field(default=0.8, gt=0, le=1)
    epoch_threshold_ms: float = Field(default=1e12, gt=0)
    fallback_sample_rate: int = Field(default=48_000, gt=0)
    decoded_cache_sessions: int = Field(default=4, gt=0)


class StorageSettings(BaseModel):
    data_directory: str = Field(default="data")


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO")
    file_path: str = Field(default="data/logs/durable_recorder.log")
    console_output: bool = Field(default=True)


class RecorderConfig:
    """Durable recorder configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults
                        are used for every section.
        """
        self.config_file = Path(config_path) if config_path else None

        if self.config_file is None:
            logger.info("No configuration file given, using defaults")
            self.config: Dict[str, Any] = {}
        else:
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")
            logger.info(f"Loading configuration from: {self.config_file}")
            self.config = self._load_config()

        self.analysis = self._section('analysis', AnalysisSettings)
        self.volume = self._section('volume', VolumeSettings)
        self.extraction = self._section('extraction', ExtractionSettings)
        self.storage = self._section('storage', StorageSettings)
        self.logging = self._section('logging', LoggingSettings)

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        # Resolve data directory
        if 'storage' in config and 'data_directory' in config['storage']:
            data_dir = config['storage']['data_directory']
            if not os.path.isabs(data_dir):
                config['storage']['data_directory'] = str(config_dir / data_dir)

        # Resolve log file path
        if 'logging' in config and 'file_path' in config['logging']:
            log_path = config['logging']['file_path']
            if not os.path.isabs(log_path):
                config['logging']['file_path'] = str(config_dir / log_path)

    def _section(self, name: str, model: type) -> Any:
        """Validate one top-level section into its settings model."""
        raw = self.config.get(name) or {}
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            raise ValueError(f"Invalid '{name}' configuration: {e}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'analysis.min_segment_ms').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_data_directory(self) -> str:
        """Get data directory path."""
        return str(Path(self.storage.data_directory).absolute())
