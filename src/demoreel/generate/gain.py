"""
Gain Planning: bounded per-track gain from loudness estimates.

- Target RMS 0.15 (roughly -16 dBFS, headroom before the mastering bus)
- Gains clamped to [0.5, 3.0] so near-silent tracks are not boosted wildly
- Silent tracks (rms == 0) and disabled normalization get unity gain
"""

import logging
from typing import List, Sequence

logger = logging.getLogger(__name__)

TARGET_RMS = 0.15
MIN_GAIN = 0.5
MAX_GAIN = 3.0


def plan_gain(
    rms: float,
    target_rms: float = TARGET_RMS,
    min_gain: float = MIN_GAIN,
    max_gain: float = MAX_GAIN,
) -> float:
    """
    Gain multiplier bringing a track toward the target RMS.

    Args:
        rms: Measured loudness proxy
        target_rms: Desired RMS
        min_gain: Lower clamp
        max_gain: Upper clamp

    Returns:
        clamp(target_rms / rms, min_gain, max_gain), or 1.0 when rms <= 0
    """
    if rms <= 0:
        return 1.0
    ratio = target_rms / rms
    return max(min_gain, min(max_gain, ratio))


def plan_gains(rms_values: Sequence[float], normalize: bool) -> List[float]:
    """
    Gains for an ordered list of tracks.

    Args:
        rms_values: One RMS per track, in track order
        normalize: When False every gain is exactly 1.0

    Returns:
        List of gain multipliers in track order
    """
    if not normalize:
        return [1.0] * len(rms_values)

    gains = [plan_gain(rms) for rms in rms_values]
    for idx, (rms, gain) in enumerate(zip(rms_values, gains)):
        logger.debug(f"Track {idx + 1}: rms={rms:.4f} -> gain={gain:.3f}")
    return gains
