"""
Render Engine Module: Offline mixing into a single master bus.

- Explicit ordered mix events summed into one float buffer
- One deterministic mastering compression pass
- Byte-exact 16-bit PCM WAV plus a lossless FLAC companion
"""

__all__ = ["mixer", "compressor", "encode", "render"]
