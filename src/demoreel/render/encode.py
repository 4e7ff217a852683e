"""
Output Encoding: float master buffer -> distributable byte buffers.

- WAV: byte-exact RIFF/PCM container, 16-bit little-endian, interleaved
- FLAC: lossless companion (16-bit) with Vorbis comment metadata

Any conforming decoder reads the WAV as 16-bit PCM at 44,100 Hz stereo.
"""

import io
import logging
import struct
from datetime import datetime
from typing import Optional

import mutagen
import numpy as np
import soundfile as sf
from mutagen.flac import FLAC

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44
FMT_CHUNK_SIZE = 16
WAVE_FORMAT_PCM = 1
BITS_PER_SAMPLE = 16


class ByteWriter:
    """Little-endian writer that owns its buffer and write cursor."""

    def __init__(self, size: int = 0):
        self._buffer = bytearray(size)
        self._offset = 0

    def tell(self) -> int:
        return self._offset

    def _put(self, data: bytes) -> None:
        end = self._offset + len(data)
        if end > len(self._buffer):
            self._buffer.extend(b"\x00" * (end - len(self._buffer)))
        self._buffer[self._offset:end] = data
        self._offset = end

    def write_fourcc(self, code: str) -> None:
        raw = code.encode("ascii")
        if len(raw) != 4:
            raise ValueError(f"FourCC must be 4 ASCII chars, got {code!r}")
        self._put(raw)

    def write_uint16(self, value: int) -> None:
        self._put(struct.pack("<H", value))

    def write_uint32(self, value: int) -> None:
        self._put(struct.pack("<I", value))

    def write_bytes(self, data: bytes) -> None:
        self._put(bytes(data))

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


def quantize_pcm16(samples: np.ndarray) -> np.ndarray:
    """
    Float samples -> int16 with asymmetric scaling.

    Negative values scale by 32768, non-negative by 32767; both truncate
    toward zero after clamping to [-1, 1].
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.trunc(scaled).astype(np.int16)


def encode_wav(samples: np.ndarray, sample_rate: int = 44100) -> bytes:
    """
    Serialise a (channels, frames) float buffer as a 16-bit PCM WAV.

    Args:
        samples: Float samples, nominally in [-1, 1]
        sample_rate: Frames per second

    Returns:
        Complete WAV file bytes (44-byte header + interleaved data)
    """
    samples = np.atleast_2d(samples)
    channels, frames = samples.shape
    block_align = channels * (BITS_PER_SAMPLE // 8)
    data_size = frames * block_align

    writer = ByteWriter(WAV_HEADER_SIZE + data_size)
    writer.write_fourcc("RIFF")
    writer.write_uint32(WAV_HEADER_SIZE + data_size - 8)
    writer.write_fourcc("WAVE")

    writer.write_fourcc("fmt ")
    writer.write_uint32(FMT_CHUNK_SIZE)
    writer.write_uint16(WAVE_FORMAT_PCM)
    writer.write_uint16(channels)
    writer.write_uint32(sample_rate)
    writer.write_uint32(sample_rate * 2 * channels)
    writer.write_uint16(block_align)
    writer.write_uint16(BITS_PER_SAMPLE)

    writer.write_fourcc("data")
    writer.write_uint32(data_size)

    interleaved = quantize_pcm16(samples).T.astype("<i2")
    writer.write_bytes(interleaved.tobytes())

    logger.debug(f"Encoded WAV: {frames} frames, {channels} ch, {writer.tell()} bytes")
    return writer.getvalue()


def _write_flac_metadata(payload: bytes, title: str, timestamp: str) -> bytes:
    """
    Add Vorbis comments to an in-memory FLAC stream.

    Returns the tagged stream, or the untagged one if tagging fails.
    """
    stream = io.BytesIO(payload)
    try:
        audio = FLAC(stream)
        audio["title"] = title
        audio["album"] = f"Demo Reel {timestamp[:10]}"  # YYYY-MM-DD
        audio["genre"] = "Demo"
        audio["date"] = timestamp[:4]
        audio.save(stream)
    except mutagen.MutagenError as e:
        logger.warning(f"Failed to write VORBIS tags to FLAC: {e}")
        return payload

    logger.debug("Added VORBIS metadata to FLAC output")
    return stream.getvalue()


def encode_flac(
    samples: np.ndarray,
    sample_rate: int = 44100,
    title: str = "Demo Reel",
    timestamp: Optional[str] = None,
) -> bytes:
    """
    Serialise a (channels, frames) float buffer as 16-bit FLAC.

    Args:
        samples: Float samples, nominally in [-1, 1]
        sample_rate: Frames per second
        title: Value for the TITLE comment
        timestamp: ISO timestamp for ALBUM/DATE comments (defaults to now)

    Returns:
        FLAC file bytes
    """
    samples = np.atleast_2d(samples)
    pcm = quantize_pcm16(samples).T

    out = io.BytesIO()
    sf.write(out, pcm, sample_rate, format="FLAC", subtype="PCM_16")
    payload = out.getvalue()

    timestamp = timestamp or datetime.now().isoformat()
    tagged = _write_flac_metadata(payload, title, timestamp)
    logger.debug(f"Encoded FLAC: {samples.shape[1]} frames, {len(tagged)} bytes")
    return tagged
