"""
Timeline Scheduling: play windows, fades, gaps and watermark inserts.

Tracks are laid end to end in input order:
- play length = min(track duration, segment cap)
- fade-out over the last fade_duration seconds of each window
- silence gap between tracks, never after the last one
Watermarks only occupy time inside the total duration, never extend it.
"""

import logging
from typing import List, Optional, Sequence, Dict, Any

import numpy as np

from ..analyze.decode import SampleBuffer
from ..errors import InputError

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_DURATION = 25.0
DEFAULT_FADE_DURATION = 0.5
DEFAULT_SILENCE_GAP = 0.3
DEFAULT_TAG_INTERVAL = 30.0
TAG_GAIN = 0.4
FIRST_TAG_MAX_SECONDS = 5.0


class PlayWindow:
    """Portion of a source admitted into the timeline."""

    def __init__(self, start: float, length: float):
        """
        Args:
            start: Offset into the source in seconds (always 0 today)
            length: Seconds played, min(duration, segment cap)
        """
        self.start = start
        self.length = length

    @property
    def end(self) -> float:
        return self.start + self.length

    def __repr__(self) -> str:
        return f"PlayWindow(start={self.start}, length={self.length:.3f})"


class GainEnvelope:
    """Constant gain, optionally followed by a linear ramp to 0 at `end`."""

    def __init__(self, gain: float, fade_start: Optional[float] = None, end: Optional[float] = None):
        self.gain = gain
        self.fade_start = fade_start
        self.end = end

    @property
    def has_fade(self) -> bool:
        return self.fade_start is not None and self.end is not None

    def values(self, times: np.ndarray) -> np.ndarray:
        """
        Evaluate the envelope at absolute timeline times.

        Args:
            times: Seconds in the output timeline

        Returns:
            Gain per time point (float64)
        """
        gains = np.full(times.shape, self.gain, dtype=np.float64)
        if not self.has_fade:
            return gains

        span = self.end - self.fade_start
        if span <= 0:
            gains[times >= self.end] = 0.0
            return gains

        fading = times >= self.fade_start
        remaining = np.clip((self.end - times[fading]) / span, 0.0, 1.0)
        gains[fading] = self.gain * remaining
        return gains

    def to_dict(self) -> Dict[str, Any]:
        return {"gain": self.gain, "fade_start": self.fade_start, "fade_end": self.end}


class ScheduledEvent:
    """One source placed on the output timeline."""

    def __init__(
        self,
        buffer: SampleBuffer,
        start: float,
        end: float,
        envelope: GainEnvelope,
        label: str = "",
        kind: str = "track",
        window: Optional[PlayWindow] = None,
    ):
        self.buffer = buffer
        self.start = start
        self.end = end
        self.envelope = envelope
        self.label = label
        self.kind = kind
        self.window = window

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "label": self.label,
            "kind": self.kind,
            "start_seconds": self.start,
            "end_seconds": self.end,
            "envelope": self.envelope.to_dict(),
        }

    def __repr__(self) -> str:
        return f"ScheduledEvent({self.kind} {self.label!r}, {self.start:.3f}-{self.end:.3f})"


class Timeline:
    """Ordered mix events plus the total output duration."""

    def __init__(self, events: List[ScheduledEvent], total_duration: float):
        self.events = list(events)
        self.total_duration = total_duration

    @property
    def track_events(self) -> List[ScheduledEvent]:
        return [e for e in self.events if e.kind == "track"]

    @property
    def tag_events(self) -> List[ScheduledEvent]:
        return [e for e in self.events if e.kind == "tag"]

    def total_frames(self, sample_rate: int) -> int:
        return int(np.ceil(sample_rate * self.total_duration))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "total_duration_seconds": self.total_duration,
            "track_count": len(self.track_events),
            "tag_count": len(self.tag_events),
            "events": [e.to_dict() for e in self.events],
        }

    def __repr__(self) -> str:
        return f"Timeline(events={len(self.events)}, total={self.total_duration:.3f}s)"


def _check_non_negative(**values: float) -> None:
    for key, value in values.items():
        if value < 0:
            raise InputError(f"{key} must be >= 0, got {value}")


def schedule_tracks(
    buffers: Sequence[SampleBuffer],
    gains: Sequence[float],
    labels: Optional[Sequence[str]] = None,
    segment_duration: float = DEFAULT_SEGMENT_DURATION,
    fade_duration: float = DEFAULT_FADE_DURATION,
    silence_gap: float = DEFAULT_SILENCE_GAP,
) -> Timeline:
    """
    Lay tracks end to end with fade-outs and silence gaps.

    Args:
        buffers: Decoded tracks, in output order
        gains: Gain multiplier per track
        labels: Display name per track (defaults to "Track N")
        segment_duration: Segment cap in seconds
        fade_duration: Fade-out length in seconds
        silence_gap: Silence between consecutive tracks in seconds

    Returns:
        Timeline of track events; total excludes any trailing gap

    Raises:
        InputError: On an empty track list or invalid timing values
    """
    if not buffers:
        raise InputError("No tracks provided")
    if len(gains) != len(buffers):
        raise InputError(f"Expected {len(buffers)} gains, got {len(gains)}")
    if segment_duration <= 0:
        raise InputError(f"segment_duration must be > 0, got {segment_duration}")
    _check_non_negative(fade_duration=fade_duration, silence_gap=silence_gap)

    if labels is None:
        labels = [f"Track {idx + 1}" for idx in range(len(buffers))]

    events: List[ScheduledEvent] = []
    cursor = 0.0
    last = len(buffers) - 1

    for idx, buffer in enumerate(buffers):
        play_length = min(buffer.duration, segment_duration)
        start = cursor
        end = start + play_length
        fade_start = max(start, end - fade_duration)

        envelope = GainEnvelope(gains[idx], fade_start=fade_start, end=end)
        events.append(ScheduledEvent(
            buffer,
            start,
            end,
            envelope,
            label=labels[idx],
            kind="track",
            window=PlayWindow(0.0, play_length),
        ))

        cursor += play_length
        if idx < last:
            cursor += silence_gap

    logger.info(f"✅ Scheduled {len(events)} tracks, total {cursor:.2f}s")
    return Timeline(events, cursor)


def watermark_times(total_duration: float, tag_interval: float) -> List[float]:
    """
    Watermark start times: first at min(5s, total / 2), then every interval.

    Args:
        total_duration: Output length in seconds
        tag_interval: Seconds between occurrences (must be > 0)

    Returns:
        Start times strictly less than total_duration
    """
    if tag_interval <= 0:
        return []

    first = min(FIRST_TAG_MAX_SECONDS, total_duration / 2)
    times = []
    k = 0
    while True:
        t = first + k * tag_interval
        if t >= total_duration:
            break
        times.append(t)
        k += 1
    return times


def schedule_watermarks(
    timeline: Timeline,
    tag_buffer: Optional[SampleBuffer],
    tag_interval: float = DEFAULT_TAG_INTERVAL,
    tag_gain: float = TAG_GAIN,
) -> Timeline:
    """
    Add recurring watermark events to a track timeline.

    Args:
        timeline: Timeline from schedule_tracks()
        tag_buffer: Decoded watermark, or None
        tag_interval: Seconds between watermarks; <= 0 disables them
        tag_gain: Constant mix gain of each watermark

    Returns:
        New Timeline with the same total duration
    """
    if tag_buffer is None or tag_interval <= 0:
        return timeline

    events = list(timeline.events)
    for n, start in enumerate(watermark_times(timeline.total_duration, tag_interval)):
        events.append(ScheduledEvent(
            tag_buffer,
            start,
            start + tag_buffer.duration,
            GainEnvelope(tag_gain),
            label=f"Tag {n + 1}",
            kind="tag",
            window=PlayWindow(0.0, tag_buffer.duration),
        ))

    added = len(events) - len(timeline.events)
    logger.info(f"✅ Scheduled {added} watermark inserts every {tag_interval:.1f}s")
    return Timeline(events, timeline.total_duration)
