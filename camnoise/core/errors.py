"""Error taxonomy shared across camnoise.

Callers acquiring a generator catch these by kind: a
``ResourceExhaustedError`` invites a retry with fewer pixels, an
``InitializationFailedError`` usually means the camera is unavailable.
"""

from __future__ import annotations


class CamNoiseError(Exception):
    """Base class for every error raised by camnoise."""


class InvalidArgumentError(CamNoiseError, ValueError):
    """A bound, count or configuration value is out of its valid domain."""


class ResourceExhaustedError(CamNoiseError):
    """Not enough unused, mutually distant pixel coordinates are left."""

    def __init__(self, message: str, *, requested: int = 0, allocated: int = 0) -> None:
        super().__init__(message)
        self.requested = requested
        self.allocated = allocated


class InitializationFailedError(CamNoiseError):
    """The frame source could not be opened or configured."""


class InvalidStateError(CamNoiseError, RuntimeError):
    """The operation is not allowed in the current session or bus state."""


class ProducerContextError(InvalidStateError):
    """A blocking draw was attempted on the thread that produces the bits."""


__all__ = [
    "CamNoiseError",
    "InitializationFailedError",
    "InvalidArgumentError",
    "InvalidStateError",
    "ProducerContextError",
    "ResourceExhaustedError",
]
