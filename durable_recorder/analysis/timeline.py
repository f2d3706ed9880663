"""Session-wide loudness timeline, quiet-region detection and segment proposal."""

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import AnalysisSettings
from ..models.analysis import (
    BreakReason,
    QuietRegion,
    Segment,
    SegmentBoundary,
    SessionTimeline,
    TimelineStats,
    VolumeFrame,
)
from ..models.chunk import Chunk, VolumeProfile
from ..models.session import SessionTiming

logger = logging.getLogger(__name__)


def percentile(values: Sequence[float], fraction: float) -> float:
    """Nearest-rank percentile: the sorted value at ``floor(fraction * n)``."""
    if len(values) == 0:
        return 0.0
    ordered = np.sort(np.asarray(values, dtype=np.float64))
    fraction = min(max(fraction, 0.0), 1.0)
    index = len(ordered) - 1 if fraction == 1.0 else int(math.floor(fraction * len(ordered)))
    return float(ordered[index])


def _chunk_duration(chunk: Chunk) -> int:
    if chunk.is_control_chunk:
        return 0
    if chunk.verified_duration_ms is not None:
        return max(0, int(chunk.verified_duration_ms))
    return chunk.span_ms


class SessionTimelineBuilder:
    """Builds one cumulative frame timeline per session and proposes segments."""

    def __init__(self, settings: Optional[AnalysisSettings] = None):
        self.settings = settings or AnalysisSettings()

    def concat_profiles(self, chunks: List[Chunk],
                        profiles: Dict[str, VolumeProfile]) -> Tuple[List[VolumeFrame], int, int, int]:
        """Lay per-chunk frames onto the session timeline.

        Each chunk's frames start at its verified offset and are clamped to
        ``ceil(duration / frame_duration)``; short profiles are padded with
        silent frames and a chunk without a profile is padded entirely, so a
        bad chunk never shifts later chunks.

        Returns:
            Tuple of (frames, sample_rate, frame_duration_ms, total_duration_ms)
        """
        frames: List[VolumeFrame] = []
        offset_ms = 0
        sample_rate = 0
        frame_duration_ms = self.settings.frame_duration_ms

        for chunk in sorted(chunks, key=lambda c: c.seq):
            duration_ms = _chunk_duration(chunk)
            if duration_ms <= 0:
                continue

            profile = profiles.get(chunk.id)
            values: List[float] = list(profile.frames) if profile is not None else []
            chunk_frame_ms = profile.frame_duration_ms if profile is not None and profile.frame_duration_ms > 0 \
                else self.settings.frame_duration_ms
            if profile is None:
                logger.debug(f"No volume profile for {chunk.id}; padding {duration_ms}ms with silence")

            expected = int(math.ceil(duration_ms / chunk_frame_ms))
            chunk_end = offset_ms + duration_ms
            for idx in range(expected):
                start = offset_ms + idx * chunk_frame_ms
                end = min(chunk_end, start + chunk_frame_ms)
                if end <= start:
                    break
                value = values[idx] if idx < len(values) else 0.0
                if not math.isfinite(value) or value < 0:
                    value = 0.0
                frames.append(VolumeFrame(index=len(frames), start_ms=start, end_ms=end,
                                          rms=value, normalized=value))

            offset_ms = chunk_end
            frame_duration_ms = chunk_frame_ms
            if sample_rate == 0 and profile is not None and profile.sample_rate > 0:
                sample_rate = profile.sample_rate

        return frames, sample_rate, frame_duration_ms, offset_ms

    def detect_quiet_regions(self, frames: List[VolumeFrame], threshold: float) -> List[QuietRegion]:
        """Find runs of frames at or below ``threshold``.

        Frames inside the warm-up window, and every frame before the first one
        louder than the threshold, are never counted as quiet.
        """
        regions: List[QuietRegion] = []
        min_quiet_ms = self.settings.min_quiet_duration_ms
        warm_up_ms = self.settings.initial_ignore_ms

        region_start: Optional[int] = None
        seen_loud = False

        def close_region(end_index: int) -> None:
            first = frames[region_start]
            last = frames[end_index]
            duration = last.end_ms - first.start_ms
            if duration < min_quiet_ms:
                return
            run = frames[region_start:end_index + 1]
            rms_values = [f.rms for f in run]
            normalized_values = [f.normalized for f in run]
            regions.append(QuietRegion(
                index=len(regions),
                start_frame=region_start,
                end_frame=end_index,
                start_ms=first.start_ms,
                end_ms=last.end_ms,
                duration_ms=duration,
                min_rms=min(rms_values),
                max_rms=max(rms_values),
                average_rms=sum(rms_values) / len(rms_values),
                center_ms=(first.start_ms + last.end_ms) / 2,
                normalized_min=min(normalized_values),
                normalized_max=max(normalized_values),
            ))

        for index, frame in enumerate(frames):
            past_warm_up = frame.start_ms >= warm_up_ms
            if past_warm_up and frame.rms > threshold:
                seen_loud = True
            is_quiet = seen_loud and past_warm_up and frame.rms <= threshold

            if is_quiet:
                if region_start is None:
                    region_start = index
            elif region_start is not None:
                close_region(index - 1)
                region_start = None

        if region_start is not None:
            close_region(len(frames) - 1)

        return regions

    def propose_segments(self, quiet_regions: List[QuietRegion],
                         total_duration_ms: float) -> Tuple[List[SegmentBoundary], List[Segment]]:
        """Cut at quiet-region centers and emit the segments between cuts."""
        settings = self.settings
        boundaries: List[SegmentBoundary] = []
        last_cut_ms = 0.0

        for region in quiet_regions:
            since_cut = region.center_ms - last_cut_ms
            if since_cut < settings.min_segment_ms:
                continue
            if since_cut >= settings.target_segment_ms or since_cut > settings.max_segment_ms:
                boundaries.append(SegmentBoundary(
                    index=len(boundaries),
                    position_ms=region.center_ms,
                    preceding_duration_ms=since_cut,
                    quiet_region_index=region.index,
                    score=max(0.0, 1.0 - region.normalized_max),
                ))
                last_cut_ms = region.center_ms

        segments: List[Segment] = []
        current_start = 0.0
        for boundary in boundaries:
            end = min(boundary.position_ms, total_duration_ms)
            if end <= current_start:
                continue
            segments.append(Segment(
                index=len(segments),
                start_ms=current_start,
                end_ms=end,
                duration_ms=end - current_start,
                break_reason=BreakReason.PAUSE,
                boundary_index=boundary.index,
            ))
            current_start = end

        if current_start < total_duration_ms:
            segments.append(Segment(
                index=len(segments),
                start_ms=current_start,
                end_ms=total_duration_ms,
                duration_ms=total_duration_ms - current_start,
                break_reason=BreakReason.END,
            ))

        return boundaries, segments

    def analyze_frames(self, session_id: str, frames: List[VolumeFrame], *,
                       total_duration_ms: Optional[float] = None,
                       sample_rate: int = 0,
                       frame_duration_ms: Optional[int] = None,
                       verification: Optional[SessionTiming] = None) -> SessionTimeline:
        """Estimate the silence threshold and segment an already-built frame timeline."""
        if not frames:
            return SessionTimeline(session_id=session_id, verification=verification)

        settings = self.settings
        values = [f.normalized for f in frames]
        peak = max(f.rms for f in frames)
        floor = min(f.rms for f in frames)

        noise_floor = percentile(values, settings.noise_percentile)
        quiet_band = percentile(values, settings.quiet_percentile)
        candidate = max(noise_floor * settings.threshold_multiplier, (noise_floor + quiet_band) / 2)
        threshold = min(candidate, peak * settings.peak_threshold_ratio)

        total = max(total_duration_ms or 0.0, frames[-1].end_ms)
        quiet_regions = self.detect_quiet_regions(frames, threshold)
        boundaries, segments = self.propose_segments(quiet_regions, total)

        stats = TimelineStats(
            sample_rate=sample_rate,
            total_duration_ms=total,
            frame_duration_ms=frame_duration_ms or settings.frame_duration_ms,
            frame_count=len(frames),
            max_rms=peak,
            min_rms=floor,
            noise_floor=noise_floor,
            threshold=threshold,
            normalized_threshold=min(threshold, 0.98),
        )
        logger.debug(f"Timeline for {session_id}: {len(frames)} frames, {len(quiet_regions)} quiet regions, "
                     f"{len(segments)} segments, threshold={threshold:.3f}")

        return SessionTimeline(
            session_id=session_id,
            frames=frames,
            quiet_regions=quiet_regions,
            boundaries=boundaries,
            segments=segments,
            stats=stats,
            verification=verification,
        )

    def build(self, session_id: str, chunks: List[Chunk], profiles: Dict[str, VolumeProfile],
              verification: Optional[SessionTiming] = None) -> SessionTimeline:
        """Concatenate chunk profiles and segment the resulting timeline."""
        frames, sample_rate, frame_duration_ms, total_ms = self.concat_profiles(chunks, profiles)
        if verification is not None and verification.is_verified:
            total_ms = verification.total_verified_duration_ms
        return self.analyze_frames(
            session_id,
            frames,
            total_duration_ms=total_ms,
            sample_rate=sample_rate,
            frame_duration_ms=frame_duration_ms,
            verification=verification,
        )
