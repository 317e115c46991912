"""Exception types raised by the segmentation core and the service layers."""

from __future__ import annotations


class SegmentationError(ValueError):
    """Base class for rejected segmentation calls (caller error)."""


class InvalidDimensionsError(SegmentationError):
    """Width/height/channel count do not describe the supplied buffer."""


class InvalidParameterError(SegmentationError):
    """Tolerance, feather radius or sampling stride is unusable."""


class InvalidImageError(ValueError):
    """Payload could not be decoded into an image."""


class SessionNotFoundError(KeyError):
    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return (
            "Invalid or non-existent session ID. "
            "Create a session first to obtain a valid session ID."
        )
