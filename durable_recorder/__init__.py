"""Durable chunked-recording engine: timing, loudness analysis, segmentation and range extraction."""

__version__ = "0.1.0"
