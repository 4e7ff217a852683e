"""
Generation Module: Turn analysed tracks into a render plan.

- Per-track gain planning from loudness estimates
- Timeline scheduling: play windows, fades, gaps, watermark inserts
"""

__all__ = ["gain", "timeline"]
