"""
Analysis Module: Decode sources and estimate their loudness.

- Every source is conformed to one working sample rate
- Loudness is a subsampled RMS proxy, not a calibrated measurement
- Decoded buffers live only as long as one render
"""

__all__ = ["decode", "loudness"]
