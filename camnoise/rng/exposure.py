"""Closed-loop exposure control for the shared camera session.

The controller keeps the mean brightness of the calibration pixels inside
``[target_low, target_high]`` (fractions of full scale). Too dark raises
gain, then exposure time, then exposure compensation. Too bright lowers
them in the reverse order. Gain and time double or halve, compensation moves
one step, and every value is clamped to its hardware range. At most one
step is taken per cooldown period.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from camnoise.core.errors import InvalidArgumentError
from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger
from camnoise.defaults import DEFAULT_COOLDOWN_S, DEFAULT_TARGET_HIGH, DEFAULT_TARGET_LOW

Number = Union[int, float]


@dataclass(frozen=True, slots=True)
class ParameterRange:
    lower: Number
    upper: Number

    def __post_init__(self) -> None:
        if self.lower > self.upper:
            raise InvalidArgumentError(f"range lower {self.lower} exceeds upper {self.upper}")

    def clamp(self, value: Number) -> Number:
        return min(max(value, self.lower), self.upper)

    @property
    def degenerate(self) -> bool:
        return self.lower == self.upper


@dataclass(frozen=True, slots=True)
class ExposureBounds:
    """Hardware ranges; ``None`` means the control is unavailable."""

    gain: Optional[ParameterRange] = None
    exposure_time: Optional[ParameterRange] = None
    compensation: Optional[ParameterRange] = None

    def normalized(self, max_exposure_time: Optional[float] = None) -> "ExposureBounds":
        """Cap the exposure time and pick the controlled path.

        With an exposure-time range the compensation path is unused; a
        compensation range that cannot move is treated as absent.
        """
        exposure_time = self.exposure_time
        if exposure_time is not None and max_exposure_time is not None:
            upper = min(exposure_time.upper, max_exposure_time)
            exposure_time = ParameterRange(min(exposure_time.lower, upper), upper)
        compensation = self.compensation
        if exposure_time is not None or (compensation is not None and compensation.degenerate):
            compensation = None
        return ExposureBounds(gain=self.gain, exposure_time=exposure_time, compensation=compensation)


@dataclass(frozen=True, slots=True)
class ExposureState:
    gain: Optional[Number] = None
    exposure_time: Optional[Number] = None
    compensation: Optional[Number] = None

    def clamped(self, bounds: ExposureBounds) -> "ExposureState":
        return ExposureState(
            gain=_clamp_optional(self.gain, bounds.gain),
            exposure_time=_clamp_optional(self.exposure_time, bounds.exposure_time),
            compensation=_clamp_optional(self.compensation, bounds.compensation),
        )


def _clamp_optional(value: Optional[Number], bounds: Optional[ParameterRange]) -> Optional[Number]:
    if bounds is None:
        return None
    if value is None:
        return bounds.upper
    return bounds.clamp(value)


def initial_exposure(bounds: ExposureBounds) -> ExposureState:
    """Start with every available control at its most sensitive setting."""
    return ExposureState(
        gain=bounds.gain.upper if bounds.gain else None,
        exposure_time=bounds.exposure_time.upper if bounds.exposure_time else None,
        compensation=bounds.compensation.upper if bounds.compensation else None,
    )


def _doubled(value: Number, bounds: ParameterRange) -> Number:
    if value <= 0:
        return bounds.clamp(max(bounds.lower, 1))
    return bounds.clamp(value * 2)


def _halved(value: Number, bounds: ParameterRange) -> Number:
    half = value // 2 if isinstance(value, int) else value / 2
    return bounds.clamp(half)


class ExposureController:
    """Cooldown-limited brightness feedback loop."""

    def __init__(
        self,
        bounds: ExposureBounds,
        state: Optional[ExposureState] = None,
        *,
        target_low: float = DEFAULT_TARGET_LOW,
        target_high: float = DEFAULT_TARGET_HIGH,
        cooldown_s: float = DEFAULT_COOLDOWN_S,
        clock: Callable[[], float] = time.monotonic,
        logger: LoggerLike = None,
    ) -> None:
        if not 0.0 <= target_low < target_high <= 1.0:
            raise InvalidArgumentError(
                f"target band must satisfy 0 <= low < high <= 1, got [{target_low}, {target_high}]"
            )
        if cooldown_s < 0:
            raise InvalidArgumentError(f"cooldown_s must be non-negative, got {cooldown_s}")
        self._bounds = bounds
        self._state = (state or initial_exposure(bounds)).clamped(bounds)
        self._target_low = target_low
        self._target_high = target_high
        self._cooldown_s = cooldown_s
        self._clock = clock
        self._last_adjusted: Optional[float] = None
        self._logger = ensure_structured_logger(logger, fallback_name="ExposureController")

    @property
    def bounds(self) -> ExposureBounds:
        return self._bounds

    @property
    def state(self) -> ExposureState:
        return self._state

    @property
    def last_adjusted(self) -> Optional[float]:
        return self._last_adjusted

    def sync_state(self, state: ExposureState) -> None:
        """Adopt values read back from the camera, clamped to the bounds."""
        self._state = state.clamped(self._bounds)

    def in_cooldown(self, now: Optional[float] = None) -> bool:
        if self._last_adjusted is None:
            return False
        now = self._clock() if now is None else now
        return now - self._last_adjusted < self._cooldown_s

    def update(self, average: float, now: Optional[float] = None) -> Optional[ExposureState]:
        """Feed one normalised brightness average.

        Returns the new state when a step was taken, otherwise ``None``.
        """
        now = self._clock() if now is None else now
        if self.in_cooldown(now):
            return None
        if average < self._target_low:
            candidate = self._brighter()
        elif average > self._target_high:
            candidate = self._darker()
        else:
            return None
        if candidate is None:
            self._logger.debug("Brightness %.3f outside target band but no control has headroom", average)
            return None
        self._logger.info(
            "Brightness %.3f outside [%.2f, %.2f]: exposure %s -> %s",
            average,
            self._target_low,
            self._target_high,
            self._state,
            candidate,
        )
        self._state = candidate
        self._last_adjusted = now
        return candidate

    def _brighter(self) -> Optional[ExposureState]:
        state, bounds = self._state, self._bounds
        if bounds.gain is not None and state.gain < bounds.gain.upper:
            return replace(state, gain=_doubled(state.gain, bounds.gain))
        if bounds.exposure_time is not None and state.exposure_time < bounds.exposure_time.upper:
            return replace(state, exposure_time=_doubled(state.exposure_time, bounds.exposure_time))
        if bounds.compensation is not None and state.compensation < bounds.compensation.upper:
            return replace(state, compensation=bounds.compensation.clamp(state.compensation + 1))
        return None

    def _darker(self) -> Optional[ExposureState]:
        state, bounds = self._state, self._bounds
        if bounds.compensation is not None and state.compensation > bounds.compensation.lower:
            return replace(state, compensation=bounds.compensation.clamp(state.compensation - 1))
        if bounds.exposure_time is not None and state.exposure_time > bounds.exposure_time.lower:
            return replace(state, exposure_time=_halved(state.exposure_time, bounds.exposure_time))
        if bounds.gain is not None and state.gain > bounds.gain.lower:
            return replace(state, gain=_halved(state.gain, bounds.gain))
        return None


__all__ = [
    "ExposureBounds",
    "ExposureController",
    "ExposureState",
    "ParameterRange",
    "initial_exposure",
]
