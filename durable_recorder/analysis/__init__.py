"""Timing reconciliation, timeline building and segmentation."""

from .timing import ChunkTimingReconciler, compute_sequential_timings
from .timeline import SessionTimelineBuilder
from .segments import SegmentCatalog

__all__ = [
    "ChunkTimingReconciler",
    "compute_sequential_timings",
    "SessionTimelineBuilder",
    "SegmentCatalog",
]
