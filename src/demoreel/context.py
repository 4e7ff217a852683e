"""
Rendering context passed explicitly into decode and render calls.

Each render owns its own context, so concurrent renders never share
buffers, scheduler state or settings.
"""

import threading
from typing import Optional

from .errors import RenderCancelledError
from .render.compressor import MasteringBusConfig

WORKING_SAMPLE_RATE = 44100
OUTPUT_CHANNELS = 2


class RenderingContext:
    """Per-render settings: clock, channel layout, mastering bus, workers."""

    def __init__(
        self,
        sample_rate: int = WORKING_SAMPLE_RATE,
        channels: int = OUTPUT_CHANNELS,
        bus: Optional[MasteringBusConfig] = None,
        decode_workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            sample_rate: Working sample rate every source is conformed to
            channels: Output channel count (fixed at 2 for the PCM container)
            bus: Mastering compressor settings, defaults if None
            decode_workers: Max concurrent decodes
            cancel_event: Set by the caller to stop the render between phases
        """
        if channels != OUTPUT_CHANNELS:
            raise ValueError(f"Output channel count is fixed at {OUTPUT_CHANNELS}")
        self.sample_rate = int(sample_rate)
        self.channels = channels
        self.bus = bus or MasteringBusConfig()
        self.decode_workers = max(1, int(decode_workers))
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Request cancellation; honoured at the next phase boundary."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self, phase: str) -> None:
        """
        Raise if cancellation was requested.

        Raises:
            RenderCancelledError: If the cancel event is set.
        """
        if self.cancel_event.is_set():
            raise RenderCancelledError(f"Render cancelled before {phase}")

    def __repr__(self) -> str:
        return (
            f"RenderingContext(sample_rate={self.sample_rate}, "
            f"channels={self.channels}, workers={self.decode_workers})"
        )
