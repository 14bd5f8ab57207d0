"""Software frame source producing noisy brightness with numpy.

Useful offline and in tests: ``tick()`` produces one frame synchronously on
the calling thread, ``start()`` runs the same loop on a background thread at
``fps``. Brightness follows the applied exposure, so the exposure controller
sees the effect of its own adjustments.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from camnoise.capture.source import BrightnessTick, Coordinate, FrameSource, TickCallback
from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger
from camnoise.rng.exposure import ExposureBounds, ExposureState, ParameterRange, initial_exposure

SampleFn = Callable[[Coordinate, int, ExposureState], float]

DEFAULT_BOUNDS = ExposureBounds(
    gain=ParameterRange(100, 1600),
    exposure_time=ParameterRange(0.0001, 0.1),
)


class SyntheticFrameSource(FrameSource):
    """Gaussian noise around a scene level scaled by gain and exposure time.

    Args:
        frame_size: ``(width, height)`` of the simulated sensor.
        bounds: hardware ranges reported to the session.
        scene_level: mean brightness (0-255) at the reference exposure.
        noise_sd: standard deviation of the per-sample noise.
        seed: seed for the numpy generator.
        sample_fn: optional override returning the brightness of a
            coordinate for a frame number and exposure; makes ticks scripted.
        fps: rate of the background loop started by ``start``; with
            ``fps <= 0`` no loop runs and the caller drives ``tick``.
        fail_open: raise from ``open`` to simulate an unavailable camera.
    """

    def __init__(
        self,
        frame_size: Tuple[int, int] = (1280, 720),
        *,
        bounds: ExposureBounds = DEFAULT_BOUNDS,
        scene_level: float = 128.0,
        noise_sd: float = 4.0,
        seed: Optional[int] = None,
        sample_fn: Optional[SampleFn] = None,
        fps: float = 30.0,
        fail_open: bool = False,
        logger: LoggerLike = None,
    ) -> None:
        self._frame_size = frame_size
        self._bounds = bounds
        self._reference = initial_exposure(bounds)
        self._exposure = self._reference
        self._scene_level = scene_level
        self._noise_sd = noise_sd
        self._rng = np.random.default_rng(seed)
        self._sample_fn = sample_fn
        self._fps = fps
        self._fail_open = fail_open
        self._logger = ensure_structured_logger(logger, fallback_name="SyntheticFrameSource")

        self._lock = threading.Lock()
        self._coordinates: Tuple[Coordinate, ...] = ()
        self._callback: Optional[TickCallback] = None
        self._open = False
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._frame_number = 0
        self.applied: list = []

    # ------------------------------------------------------------------
    # FrameSource

    @property
    def frame_size(self) -> Tuple[int, int]:
        return self._frame_size

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self._fail_open:
            raise OSError("synthetic camera unavailable")
        self._open = True
        self._logger.debug("Synthetic source opened at %dx%d", *self._frame_size)

    def start(self) -> None:
        if self._running or self._fps <= 0:
            return
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="camnoise-synthetic", daemon=True)
        self._thread.start()

    def close(self) -> None:
        self._running = False
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        with self._lock:
            self._callback = None
            self._coordinates = ()
        self._open = False

    def subscribe(self, coordinates: Sequence[Coordinate], callback: Optional[TickCallback]) -> None:
        with self._lock:
            self._coordinates = tuple(coordinates)
            self._callback = callback

    def hardware_bounds(self) -> ExposureBounds:
        return self._bounds

    def current_exposure(self) -> ExposureState:
        return self._exposure

    def apply_exposure(self, state: ExposureState) -> bool:
        self._exposure = state
        self.applied.append(state)
        return True

    # ------------------------------------------------------------------
    # Frame generation

    def tick(self) -> Optional[BrightnessTick]:
        """Produce one frame and deliver it to the subscriber, if any."""
        with self._lock:
            coordinates = self._coordinates
            callback = self._callback
        self._frame_number += 1
        samples = self._sample(coordinates)
        tick = BrightnessTick(
            samples=samples,
            frame_number=self._frame_number,
            monotonic_ns=time.monotonic_ns(),
            wall_time=time.time(),
            exposure=self._exposure,
        )
        if callback is not None:
            callback(tick)
        return tick

    def _sample(self, coordinates: Sequence[Coordinate]) -> Dict[Coordinate, float]:
        if self._sample_fn is not None:
            return {c: float(self._sample_fn(c, self._frame_number, self._exposure)) for c in coordinates}
        if not coordinates:
            return {}
        level = self._scene_level * self._exposure_factor()
        noise = self._rng.normal(level, self._noise_sd, size=len(coordinates))
        values = np.clip(np.rint(noise), 0, 255)
        return {c: float(v) for c, v in zip(coordinates, values)}

    def _exposure_factor(self) -> float:
        factor = 1.0
        current, reference = self._exposure, self._reference
        if current.gain and reference.gain:
            factor *= current.gain / reference.gain
        if current.exposure_time and reference.exposure_time:
            factor *= current.exposure_time / reference.exposure_time
        if current.compensation is not None and reference.compensation is not None:
            factor *= 2.0 ** (current.compensation - reference.compensation)
        return factor

    def _loop(self) -> None:
        interval = 1.0 / self._fps
        while self._running:
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                self._logger.exception("Synthetic tick failed")
            elapsed = time.monotonic() - started
            if interval > elapsed:
                time.sleep(interval - elapsed)


__all__ = ["DEFAULT_BOUNDS", "SyntheticFrameSource"]
