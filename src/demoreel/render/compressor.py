"""
Mastering Bus Compressor: single feed-forward dynamics stage.

- Linked detection: one envelope from max(|L|, |R|) per frame
- One-pole envelope follower with separate attack/release coefficients
- Soft knee spanning [threshold, threshold + knee], ratio above it
- Same gain applied to every channel, so the stereo image never shifts
"""

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

LEVEL_FLOOR_DB = -200.0
ENVELOPE_CHUNK_FRAMES = 65536


class MasteringBusConfig:
    """Compressor settings for the master bus."""

    def __init__(
        self,
        threshold_db: float = -20.0,
        knee_db: float = 10.0,
        ratio: float = 4.0,
        attack: float = 0.003,
        release: float = 0.25,
    ):
        """
        Args:
            threshold_db: Level where gain reduction starts
            knee_db: Width of the soft transition above the threshold
            ratio: Input/output slope above the knee (4 means 4:1)
            attack: Envelope rise time constant in seconds
            release: Envelope fall time constant in seconds
        """
        if ratio < 1.0:
            raise ValueError(f"ratio must be >= 1, got {ratio}")
        if knee_db < 0 or attack < 0 or release < 0:
            raise ValueError("knee, attack and release must be >= 0")
        self.threshold_db = threshold_db
        self.knee_db = knee_db
        self.ratio = ratio
        self.attack = attack
        self.release = release

    def __repr__(self) -> str:
        return (
            f"MasteringBusConfig(threshold={self.threshold_db}dB, knee={self.knee_db}dB, "
            f"ratio={self.ratio}:1, attack={self.attack}s, release={self.release}s)"
        )


def _smoothing_coefficient(time_constant: float, sample_rate: int) -> float:
    if time_constant <= 0:
        return 0.0
    return float(np.exp(-1.0 / (time_constant * sample_rate)))


class DynamicsCompressor:
    """Offline compressor over a whole (channels, frames) buffer."""

    def __init__(self, config: Optional[MasteringBusConfig] = None, sample_rate: int = 44100):
        self.config = config or MasteringBusConfig()
        self.sample_rate = sample_rate
        self.attack_coef = _smoothing_coefficient(self.config.attack, sample_rate)
        self.release_coef = _smoothing_coefficient(self.config.release, sample_rate)

    def curve_db(self, level_db: np.ndarray) -> np.ndarray:
        """Static transfer curve: input level (dB) -> output level (dB)."""
        level_db = np.asarray(level_db, dtype=np.float64)
        threshold = self.config.threshold_db
        knee = self.config.knee_db
        slope = 1.0 / self.config.ratio

        out = level_db.copy()
        over = level_db - threshold

        if knee > 0:
            in_knee = (over > 0) & (over <= knee)
            out[in_knee] = level_db[in_knee] + (slope - 1.0) * over[in_knee] ** 2 / (2.0 * knee)
            above = over > knee
            knee_top = threshold + knee / 2.0 + knee * slope / 2.0
            out[above] = knee_top + (level_db[above] - threshold - knee) * slope
        else:
            above = over > 0
            out[above] = threshold + over[above] * slope

        return out

    def gain_reduction_db(self, level_db: np.ndarray) -> np.ndarray:
        """Gain change (<= 0 dB) the static curve applies at each level."""
        level_db = np.asarray(level_db, dtype=np.float64)
        return self.curve_db(level_db) - level_db

    def envelope(self, samples: np.ndarray, chunk_frames: int = ENVELOPE_CHUNK_FRAMES) -> np.ndarray:
        """
        Linked one-pole envelope of the per-frame peak across channels.

        The follower runs over fixed-size chunks, carrying its state across
        chunk boundaries, so only one chunk is ever held as Python floats.

        Args:
            samples: Array shaped (channels, frames)
            chunk_frames: Frames converted per chunk

        Returns:
            Linear envelope per frame (float64)
        """
        if chunk_frames < 1:
            raise ValueError(f"chunk_frames must be >= 1, got {chunk_frames}")

        n = samples.shape[1]
        out = np.empty(n, dtype=np.float64)
        attack = self.attack_coef
        release = self.release_coef

        env = 0.0
        for start in range(0, n, chunk_frames):
            stop = min(n, start + chunk_frames)
            peaks = np.abs(samples[:, start:stop]).max(axis=0).astype(np.float64).tolist()
            values = []
            for peak in peaks:
                coef = attack if peak > env else release
                env = coef * env + (1.0 - coef) * peak
                values.append(env)
            out[start:stop] = values
        return out

    def process(self, samples: np.ndarray) -> np.ndarray:
        """
        Compress a buffer and hard-clamp it to [-1, 1].

        Args:
            samples: Array shaped (channels, frames); not modified

        Returns:
            New float32 array of the same shape
        """
        env = self.envelope(samples)
        level_db = 20.0 * np.log10(np.maximum(env, 10.0 ** (LEVEL_FLOOR_DB / 20.0)))
        reduction_db = self.gain_reduction_db(level_db)
        gain = np.power(10.0, reduction_db / 20.0)

        if reduction_db.size:
            logger.debug(f"Compressor max gain reduction: {reduction_db.min():.2f} dB")

        out = samples.astype(np.float64) * gain[np.newaxis, :]
        return np.clip(out, -1.0, 1.0).astype(np.float32)
