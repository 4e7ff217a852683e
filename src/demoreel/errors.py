"""
Exception taxonomy for the demo reel engine.

Fatal errors abort the whole render; no partial output is ever returned.
The only recoverable case is a watermark that fails to decode.
"""

from typing import Optional


class DemoReelError(Exception):
    """Base class for all engine failures."""
    pass


class InputError(DemoReelError):
    """Raised when the render request itself is invalid (e.g. no tracks)."""
    pass


class DecodeError(DemoReelError):
    """Raised when a source cannot be decoded. Carries the source name."""

    def __init__(self, name: str, reason: Optional[str] = None):
        self.name = name
        self.reason = reason
        message = f"Could not decode audio file: {name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class TagDecodeError(DecodeError):
    """Watermark decode failure. The engine renders without tags instead."""
    pass


class RenderError(DemoReelError):
    """Raised when scheduling, mixing or encoding fails."""
    pass


class RenderCancelledError(DemoReelError):
    """Raised between phases when the render was cancelled by the caller."""
    pass
