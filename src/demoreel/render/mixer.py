"""
Mix Bus: sum scheduled events into one stereo master buffer.

Events are written frame-accurately at the working sample rate. Anything
falling outside the master is clipped off with a warning, never an error.
"""

import logging
from typing import Optional

import numpy as np

from ..context import RenderingContext
from ..generate.timeline import Timeline, ScheduledEvent

logger = logging.getLogger(__name__)


def _event_frames(event: ScheduledEvent, sample_rate: int):
    """First output frame and frame count of an event (capped by its source)."""
    start_frame = int(round(event.start * sample_rate))
    length = int(round(event.duration * sample_rate))
    return start_frame, max(0, min(length, event.buffer.frames))


def mix_event(master: np.ndarray, event: ScheduledEvent, sample_rate: int) -> int:
    """
    Add one event into the master buffer in place.

    Args:
        master: (channels, frames) float64 accumulator
        event: Scheduled source with its gain envelope
        sample_rate: Frames per second of master and source

    Returns:
        Number of frames written
    """
    total_frames = master.shape[1]
    start_frame, count = _event_frames(event, sample_rate)

    dst_start = max(0, start_frame)
    dst_end = min(total_frames, start_frame + count)
    dropped = count - max(0, dst_end - dst_start)
    if dropped > 1:
        logger.warning(
            f"Event {event.label!r} at {event.start:.3f}s exceeds the master buffer; "
            f"clipping {dropped} frames"
        )
    if dst_end <= dst_start:
        return 0

    src_start = dst_start - start_frame
    src_end = src_start + (dst_end - dst_start)

    times = np.arange(dst_start, dst_end, dtype=np.float64) / sample_rate
    gains = event.envelope.values(times)

    source = event.buffer.samples[:, src_start:src_end].astype(np.float64)
    if source.shape[0] == 1:
        # mono feeds every output channel
        source = np.repeat(source, master.shape[0], axis=0)

    master[:, dst_start:dst_end] += source * gains[np.newaxis, :]
    return dst_end - dst_start


def mix_timeline(timeline: Timeline, context: Optional[RenderingContext] = None) -> np.ndarray:
    """
    Allocate the master bus and sum every event into it.

    Args:
        timeline: Scheduled tracks and watermarks
        context: Supplies sample rate and output channel count

    Returns:
        (channels, ceil(sample_rate * total_duration)) float64 array, uncompressed
    """
    context = context or RenderingContext()
    sample_rate = context.sample_rate
    total_frames = timeline.total_frames(sample_rate)

    master = np.zeros((context.channels, total_frames), dtype=np.float64)
    for event in timeline.events:
        written = mix_event(master, event, sample_rate)
        logger.debug(f"Mixed {event.kind} {event.label!r}: {written} frames")

    logger.info(f"✅ Mixed {len(timeline.events)} events into {total_frames} frames")
    return master
