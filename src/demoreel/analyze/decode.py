"""
Source Decoding: raw encoded bytes -> canonical float sample buffer.

- Container auto-detected by libsndfile (WAV, AIFF, FLAC, OGG, MP3 where supported)
- Every buffer conformed to the context's working sample rate
- Mono and stereo only; wider layouts are rejected
"""

import io
import logging
import math
from typing import Optional, Dict, Any

import mutagen
import numpy as np
import soundfile as sf
from scipy import signal

from ..context import RenderingContext, WORKING_SAMPLE_RATE
from ..errors import DecodeError

logger = logging.getLogger(__name__)

MAX_SOURCE_CHANNELS = 2

# Anti-alias filter: cutoff as a fraction of the lower Nyquist, taps per side
# per unit of max(up, down), Kaiser beta (~85 dB stopband)
RESAMPLE_CUTOFF = 0.95
RESAMPLE_HALF_TAPS = 40
RESAMPLE_KAISER_BETA = 8.6


class SampleBuffer:
    """Immutable channels x frames float32 buffer at a fixed sample rate."""

    def __init__(self, samples: np.ndarray, sample_rate: int):
        """
        Args:
            samples: Array shaped (channels, frames); copied and frozen
            sample_rate: Samples per second
        """
        data = np.array(samples, dtype=np.float32, copy=True)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        if data.ndim != 2:
            raise ValueError(f"Expected (channels, frames) samples, got shape {data.shape}")
        data.setflags(write=False)
        self._samples = data
        self.sample_rate = int(sample_rate)

    @property
    def samples(self) -> np.ndarray:
        return self._samples

    @property
    def num_channels(self) -> int:
        return self._samples.shape[0]

    @property
    def frames(self) -> int:
        return self._samples.shape[1]

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate

    def channel(self, index: int) -> np.ndarray:
        return self._samples[index]

    def __repr__(self) -> str:
        return (
            f"SampleBuffer(channels={self.num_channels}, frames={self.frames}, "
            f"sample_rate={self.sample_rate})"
        )


def probe_source(source: bytes) -> Optional[Dict[str, Any]]:
    """
    Identify the container and duration of encoded audio via mutagen.

    Args:
        source: Raw encoded bytes

    Returns:
        Dict with "format", "mime" and "duration_seconds", or None if unrecognised
    """
    try:
        audio = mutagen.File(io.BytesIO(source))
    except mutagen.MutagenError as e:
        logger.debug(f"Container probe failed: {e}")
        return None

    if audio is None:
        return None

    mime = audio.mime[0] if audio.mime else "application/octet-stream"
    return {
        "format": type(audio).__name__,
        "mime": mime,
        "duration_seconds": float(getattr(audio.info, "length", 0.0) or 0.0),
    }


def _antialias_taps(up: int, down: int) -> np.ndarray:
    """Kaiser-windowed low-pass for an up/down polyphase conversion."""
    max_rate = max(up, down)
    half_len = RESAMPLE_HALF_TAPS * max_rate
    return signal.firwin(
        2 * half_len + 1,
        RESAMPLE_CUTOFF / max_rate,
        window=("kaiser", RESAMPLE_KAISER_BETA),
    )


def resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """
    Polyphase sample-rate conversion with an anti-alias filter, channel by channel.

    Content above the lower of the two Nyquist frequencies is filtered out
    before decimation instead of folding back into the audible band.

    Args:
        samples: Array shaped (channels, frames)
        source_rate: Rate of the input samples
        target_rate: Desired output rate

    Returns:
        Array shaped (channels, ceil(frames * target_rate / source_rate))
    """
    if source_rate == target_rate or samples.shape[1] == 0:
        return samples

    g = math.gcd(int(source_rate), int(target_rate))
    up = int(target_rate) // g
    down = int(source_rate) // g
    taps = _antialias_taps(up, down)

    rows = [signal.resample_poly(row, up, down, window=taps) for row in samples]
    return np.stack(rows, axis=0).astype(np.float32)


def decode_audio(
    source: bytes,
    name: str,
    context: Optional[RenderingContext] = None,
) -> SampleBuffer:
    """
    Decode one audio file into a SampleBuffer at the working sample rate.

    Args:
        source: Raw encoded bytes (borrowed, not retained)
        name: Display name, carried by any DecodeError
        context: Rendering context supplying the target sample rate

    Returns:
        SampleBuffer with 1 or 2 channels

    Raises:
        DecodeError: On empty, corrupt, unsupported or >2-channel input
    """
    target_rate = context.sample_rate if context is not None else WORKING_SAMPLE_RATE

    if not source:
        raise DecodeError(name, "empty source")

    try:
        data, source_rate = sf.read(io.BytesIO(source), dtype="float32", always_2d=True)
    except (sf.SoundFileError, RuntimeError, TypeError) as e:
        raise DecodeError(name, str(e)) from e

    frames, channels = data.shape
    if frames == 0:
        raise DecodeError(name, "no audio frames")
    if channels > MAX_SOURCE_CHANNELS:
        raise DecodeError(name, f"unsupported channel layout ({channels} channels)")

    samples = data.T
    if source_rate != target_rate:
        logger.debug(f"Resampling {name}: {source_rate} Hz -> {target_rate} Hz")
        samples = resample(samples, source_rate, target_rate)

    # filter ringing can overshoot full scale
    buffer = SampleBuffer(np.clip(samples, -1.0, 1.0), target_rate)

    if logger.isEnabledFor(logging.DEBUG):
        probe = probe_source(source)
        container = probe["format"] if probe else "unknown"
        logger.debug(
            f"Decoded {name}: {container}, {channels} ch, {source_rate} Hz, "
            f"{buffer.duration:.2f}s"
        )
    return buffer
