"""Frame source interface consumed by the camera session."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence, Tuple

from camnoise.rng.exposure import ExposureBounds, ExposureState

Coordinate = Tuple[int, int]


@dataclass(frozen=True, slots=True)
class BrightnessTick:
    """Brightness of every subscribed coordinate in one frame."""

    samples: Mapping[Coordinate, float]
    frame_number: int
    monotonic_ns: int
    wall_time: float = 0.0
    exposure: Optional[ExposureState] = field(default=None)


TickCallback = Callable[[BrightnessTick], None]


class FrameSource(ABC):
    """Delivers per-tick brightness samples from one background thread.

    ``open`` may raise any exception; the session wraps it in
    ``InitializationFailedError``. ``subscribe`` replaces the coordinate set
    and callback atomically and may be called while frames are flowing.
    """

    @property
    @abstractmethod
    def frame_size(self) -> Tuple[int, int]:
        """``(width, height)`` of delivered frames; valid after ``open``."""

    @abstractmethod
    def open(self) -> None:
        ...

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @abstractmethod
    def subscribe(self, coordinates: Sequence[Coordinate], callback: Optional[TickCallback]) -> None:
        ...

    @abstractmethod
    def hardware_bounds(self) -> ExposureBounds:
        ...

    @abstractmethod
    def current_exposure(self) -> ExposureState:
        ...

    @abstractmethod
    def apply_exposure(self, state: ExposureState) -> bool:
        """Push ``state`` to the sensor; ``False`` if the camera refused it."""

    @property
    def is_open(self) -> bool:
        return False


__all__ = ["BrightnessTick", "Coordinate", "FrameSource", "TickCallback"]
