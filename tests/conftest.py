"""Shared fixtures: synthetic audio generated in memory."""

import io

import numpy as np
import pytest
import soundfile as sf


def _make_audio_bytes(
    duration: float,
    sample_rate: int = 44100,
    channels: int = 1,
    amplitude: float = 0.05,
    freq: float = None,
    fmt: str = "WAV",
    subtype: str = "FLOAT",
) -> bytes:
    frames = int(round(duration * sample_rate))
    if freq:
        t = np.arange(frames) / sample_rate
        mono = amplitude * np.sin(2 * np.pi * freq * t)
    else:
        mono = np.full(frames, amplitude)
    data = np.tile(mono[:, np.newaxis], (1, channels)).astype(np.float32)
    buf = io.BytesIO()
    sf.write(buf, data, sample_rate, format=fmt, subtype=subtype)
    return buf.getvalue()


@pytest.fixture
def make_audio():
    """Factory for encoded audio bytes (DC or sine, any rate/channels)."""
    return _make_audio_bytes


@pytest.fixture
def short_track(make_audio):
    """One second of quiet mono audio."""
    return make_audio(1.0)
