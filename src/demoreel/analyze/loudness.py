"""
Loudness Estimation: coarse RMS proxy for gain planning.

This is NOT a calibrated loudness measurement (no LUFS weighting, no gating).
Only the first channel is read and only every 4th frame is sampled, which
keeps long inputs cheap at the cost of accuracy.
"""

import logging

import numpy as np

from .decode import SampleBuffer

logger = logging.getLogger(__name__)

RMS_FRAME_STEP = 4


def measure_rms(buffer: SampleBuffer, step: int = RMS_FRAME_STEP) -> float:
    """
    Estimate loudness as RMS over a subsampled first channel.

    rms = sqrt(mean(x[::step] ** 2))

    Args:
        buffer: Decoded audio
        step: Frame stride (default 4)

    Returns:
        RMS in linear amplitude (0.0 for an empty buffer)
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")
    if buffer.frames == 0:
        return 0.0

    sampled = buffer.channel(0)[::step].astype(np.float64)
    rms = float(np.sqrt(np.mean(sampled * sampled)))
    logger.debug(f"RMS estimate: {rms:.4f} over {sampled.size} frames")
    return rms
