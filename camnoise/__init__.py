"""Random numbers from camera sensor noise."""

from __future__ import annotations

from importlib import metadata

from .config import CamNoiseConfig, load_config
from .core.errors import (
    CamNoiseError,
    InitializationFailedError,
    InvalidArgumentError,
    InvalidStateError,
    ProducerContextError,
    ResourceExhaustedError,
)
from .rng.debias import DebiasMethod, ReferenceMode
from .rng.digest import DigestRng
from .rng.session import ALL_PIXELS, CameraSession, NoiseRng

try:
    __version__ = metadata.version("camnoise")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


__all__ = [
    "ALL_PIXELS",
    "CamNoiseConfig",
    "CamNoiseError",
    "CameraSession",
    "DebiasMethod",
    "DigestRng",
    "InitializationFailedError",
    "InvalidArgumentError",
    "InvalidStateError",
    "NoiseRng",
    "ProducerContextError",
    "ReferenceMode",
    "ResourceExhaustedError",
    "__version__",
    "load_config",
]
