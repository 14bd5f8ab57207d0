"""Shared camera session and the generator instances attached to it.

One :class:`CameraSession` owns a frame source, the registry of tracked
coordinates, the calibration pixels and the exposure controller. Every
:class:`NoiseRng` acquired from it tracks its own pixels, whitens its own raw
bits and publishes them on its own bit bus. All per-tick state is mutated
under the session lock on the source's delivery thread; bits are published
after the lock is released so a slow consumer never blocks acquisition or
release.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from camnoise.capture.source import BrightnessTick, Coordinate, FrameSource
from camnoise.config import CamNoiseConfig, load_config
from camnoise.core.errors import (
    InitializationFailedError,
    InvalidArgumentError,
    InvalidStateError,
    ProducerContextError,
    ResourceExhaustedError,
)
from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger
from camnoise.rng.bbs import BlumBlumShub
from camnoise.rng.bus import BroadcastChannel, Subscription
from camnoise.rng.debias import DebiasMethod, Debiaser, ReferenceMode, raw_bit
from camnoise.rng.exposure import ExposureController
from camnoise.rng.values import RandomValues

ALL_PIXELS = -1
CALIBRATION_POINTS = 5

ReadyListener = Callable[["NoiseRng", bool], None]


@dataclass(slots=True)
class TrackedPixel:
    coordinate: Coordinate
    history: Deque[float] = field(default_factory=deque)

    @classmethod
    def create(cls, coordinate: Coordinate, window_size: int) -> "TrackedPixel":
        return cls(coordinate, deque(maxlen=window_size))

    @property
    def full(self) -> bool:
        return len(self.history) == self.history.maxlen


@dataclass(slots=True)
class _Delivery:
    instance: "NoiseRng"
    bits: List[bool]
    raw: Optional[List[float]]
    ready: Optional[bool]


def calibration_points(frame_size: Tuple[int, int], margin: int, count: int = CALIBRATION_POINTS) -> Tuple[Coordinate, ...]:
    """Evenly spaced points on the frame diagonal, ``margin`` pixels in from the corners."""
    width, height = frame_size
    margin = max(0, min(margin, (width - 1) // 2, (height - 1) // 2))
    x0, y0 = margin, margin
    x1, y1 = width - 1 - margin, height - 1 - margin
    points = []
    for step in range(count):
        fraction = step / (count - 1) if count > 1 else 0.0
        point = (int(round(x0 + (x1 - x0) * fraction)), int(round(y0 + (y1 - y0) * fraction)))
        if point not in points:
            points.append(point)
    return tuple(points)


class CameraSession:
    """Owns a frame source and every generator instance reading from it.

    The source is opened by the first :meth:`acquire` and closed when the
    last instance is released or on :meth:`reset`.
    """

    def __init__(
        self,
        source: FrameSource,
        config: Optional[CamNoiseConfig] = None,
        *,
        seed: Optional[int] = None,
        csprng_factory: Optional[Callable[[], BlumBlumShub]] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: LoggerLike = None,
    ) -> None:
        self._source = source
        self._config = config or load_config()
        self._clock = clock
        self._rng = np.random.default_rng(seed)
        self._logger = ensure_structured_logger(logger, fallback_name="CameraSession")
        bits = self._config.debias.csprng_bits
        self._csprng_factory = csprng_factory or (lambda: BlumBlumShub(bits))

        # _lifecycle serialises open/close; _lock guards per-tick state
        self._lifecycle = threading.Lock()
        self._lock = threading.RLock()
        self._instances: List[NoiseRng] = []
        self._used: Set[Coordinate] = set()
        self._calibration: Tuple[Coordinate, ...] = ()
        self._frame_size: Tuple[int, int] = (0, 0)
        self._controller: Optional[ExposureController] = None
        self._settle_until: Optional[float] = None
        self._open = False
        self._producer_ident: Optional[int] = None
        self._min_pixel_distance = self._config.sampling.min_pixel_distance
        self._next_id = 1

    # ------------------------------------------------------------------
    # Introspection

    @property
    def config(self) -> CamNoiseConfig:
        return self._config

    @property
    def source(self) -> FrameSource:
        return self._source

    @property
    def active(self) -> bool:
        with self._lock:
            return self._open or bool(self._instances)

    @property
    def instances(self) -> Tuple["NoiseRng", ...]:
        with self._lock:
            return tuple(self._instances)

    @property
    def calibration_coordinates(self) -> Tuple[Coordinate, ...]:
        return self._calibration

    @property
    def used_coordinates(self) -> Set[Coordinate]:
        with self._lock:
            return set(self._used)

    @property
    def min_pixel_distance(self) -> int:
        return self._min_pixel_distance

    @property
    def exposure_controller(self) -> Optional[ExposureController]:
        return self._controller

    def check_consumer_context(self) -> None:
        if self._producer_ident is not None and threading.get_ident() == self._producer_ident:
            raise ProducerContextError("blocking read from the frame delivery thread would deadlock")

    # ------------------------------------------------------------------
    # Configuration

    def configure(
        self,
        *,
        min_pixel_distance: Optional[int] = None,
        source: Optional[FrameSource] = None,
    ) -> None:
        """Change session-wide settings; only allowed while nothing is active."""
        if min_pixel_distance is not None and min_pixel_distance <= 0:
            raise InvalidArgumentError(f"min_pixel_distance must be positive, got {min_pixel_distance}")
        with self._lifecycle:
            if self.active:
                raise InvalidStateError("cannot reconfigure a session with active generators")
            if min_pixel_distance is not None:
                self._min_pixel_distance = min_pixel_distance
            if source is not None:
                self._source = source
        self._logger.debug("Session configured: min_pixel_distance=%d", self._min_pixel_distance)

    # ------------------------------------------------------------------
    # Instances

    def acquire(
        self,
        pixel_count: int = ALL_PIXELS,
        *,
        debias_method: "str | DebiasMethod | None" = None,
        reference: "str | ReferenceMode | None" = None,
    ) -> "NoiseRng":
        """Attach a new generator tracking ``pixel_count`` pixels (or ``ALL_PIXELS``)."""
        if pixel_count != ALL_PIXELS and pixel_count <= 0:
            raise InvalidArgumentError(f"pixel_count must be positive or ALL_PIXELS, got {pixel_count}")
        method = DebiasMethod.parse(debias_method or self._config.debias.method)
        mode = ReferenceMode.parse(reference or self._config.sampling.reference)
        if pixel_count != ALL_PIXELS:
            self._check_debias_fits(method, pixel_count)

        with self._lifecycle:
            if not self._open:
                self._open_source()
            with self._lock:
                try:
                    coordinates = self._allocate(pixel_count)
                except ResourceExhaustedError as exc:
                    self._logger.error("Pixel allocation failed: %s", exc)
                    if not self._instances:
                        self._close_source_locked()
                    raise
                try:
                    self._check_debias_fits(method, len(coordinates))
                except InvalidArgumentError:
                    for coordinate in coordinates:
                        self._used.discard(coordinate)
                    if not self._instances:
                        self._close_source_locked()
                    raise
                instance = NoiseRng(
                    self,
                    self._next_id,
                    coordinates,
                    debias_method=method,
                    reference=mode,
                )
                self._next_id += 1
                self._instances.append(instance)
                self._subscribe_locked()
            self._source.start()

        self._logger.info(
            "Generator %d acquired: %d pixel(s), debias=%s, reference=%s",
            instance.id,
            len(coordinates),
            method.value,
            mode.value,
        )
        return instance

    def release(self, instance: "NoiseRng") -> None:
        """Detach ``instance``; closes the source when it was the last one."""
        close_source = False
        with self._lifecycle:
            with self._lock:
                if instance not in self._instances:
                    return
                self._instances.remove(instance)
                for coordinate in instance.coordinates:
                    self._used.discard(coordinate)
                if self._instances:
                    self._subscribe_locked()
                else:
                    close_source = self._detach_locked()
            instance._shutdown()
            if close_source:
                self._source.close()
        self._logger.info("Generator %d released", instance.id)

    def reset(self) -> None:
        """Release every instance and close the source; safe when idle."""
        with self._lifecycle:
            with self._lock:
                instances = list(self._instances)
                self._instances.clear()
                self._used.clear()
                close_source = self._detach_locked()
            for instance in instances:
                instance._shutdown()
            if close_source:
                self._source.close()
        if instances or close_source:
            self._logger.info("Session reset: %d generator(s) released", len(instances))

    def close(self) -> None:
        self.reset()

    def __enter__(self) -> "CameraSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.reset()

    # ------------------------------------------------------------------
    # Source lifecycle (caller holds _lifecycle)

    def _open_source(self) -> None:
        try:
            self._source.open()
            frame_size = self._source.frame_size
            bounds = self._source.hardware_bounds().normalized(self._config.exposure.max_exposure_time)
        except Exception as exc:
            self._safe_close_source()
            raise InitializationFailedError(f"Failed to open frame source: {exc}") from exc

        exposure = self._config.exposure
        controller = ExposureController(
            bounds,
            target_low=exposure.target_low,
            target_high=exposure.target_high,
            cooldown_s=exposure.cooldown_s,
            clock=self._clock,
            logger=self._logger,
        )
        try:
            applied = self._source.apply_exposure(controller.state)
        except Exception as exc:
            self._safe_close_source()
            raise InitializationFailedError(f"Failed to configure frame source exposure: {exc}") from exc
        if not applied:
            self._logger.warning("Frame source rejected initial exposure %s", controller.state)

        with self._lock:
            self._frame_size = frame_size
            self._calibration = calibration_points(frame_size, self._config.sampling.calibration_margin)
            self._used = set(self._calibration)
            self._controller = controller
            self._settle_until = self._clock() + exposure.settle_s
            self._open = True
        self._logger.info(
            "Session opened: frame=%dx%d, calibration=%d pixel(s), exposure=%s",
            frame_size[0],
            frame_size[1],
            len(self._calibration),
            controller.state,
        )

    def _check_debias_fits(self, method: DebiasMethod, pixel_count: int) -> None:
        # interpixel XOR keeps one bit per pixel, so a short group never fills
        group = self._config.debias.xor_group_size
        if method is DebiasMethod.INTERPIXEL_XOR and pixel_count < group:
            raise InvalidArgumentError(
                f"interpixel_xor needs at least {group} pixel(s) per generator, got {pixel_count}"
            )

    def _safe_close_source(self) -> None:
        try:
            self._source.close()
        except Exception:
            self._logger.exception("Error closing frame source after failed open")

    def _detach_locked(self) -> bool:
        """Forget per-session state; returns whether the source must be closed."""
        was_open = self._open
        self._open = False
        self._controller = None
        self._settle_until = None
        self._calibration = ()
        self._used.clear()
        self._producer_ident = None
        if was_open:
            self._source.subscribe((), None)
        return was_open

    def _close_source_locked(self) -> None:
        if self._detach_locked():
            self._source.close()

    def _subscribe_locked(self) -> None:
        coordinates: List[Coordinate] = list(self._calibration)
        for instance in self._instances:
            coordinates.extend(instance.coordinates)
        self._source.subscribe(coordinates, self._on_tick)

    # ------------------------------------------------------------------
    # Pixel allocation (caller holds _lock)

    def _grid(self) -> Tuple[int, int]:
        distance = self._min_pixel_distance
        width, height = self._frame_size
        return width // distance, height // distance

    def _allocate(self, pixel_count: int) -> Tuple[Coordinate, ...]:
        distance = self._min_pixel_distance
        columns, rows = self._grid()
        if columns <= 1 or rows <= 1:
            raise ResourceExhaustedError(
                f"frame {self._frame_size[0]}x{self._frame_size[1]} has no room for pixels {distance} apart",
                requested=max(pixel_count, 0),
            )

        if pixel_count == ALL_PIXELS:
            free = [
                (column * distance, row * distance)
                for row in range(1, rows)
                for column in range(1, columns)
                if (column * distance, row * distance) not in self._used
            ]
            if not free:
                raise ResourceExhaustedError("no free pixel coordinates left", requested=ALL_PIXELS)
            self._used.update(free)
            return tuple(free)

        allocated: List[Coordinate] = []
        attempts = self._config.sampling.pixel_attempts
        for _ in range(pixel_count):
            for _ in range(attempts):
                candidate = (
                    int(self._rng.integers(1, columns)) * distance,
                    int(self._rng.integers(1, rows)) * distance,
                )
                if candidate not in self._used:
                    self._used.add(candidate)
                    allocated.append(candidate)
                    break
            else:
                for coordinate in allocated:
                    self._used.discard(coordinate)
                raise ResourceExhaustedError(
                    f"could only allocate {len(allocated)} of {pixel_count} pixel(s) "
                    f"within {attempts} attempts each",
                    requested=pixel_count,
                    allocated=len(allocated),
                )
        return tuple(allocated)

    # ------------------------------------------------------------------
    # Tick processing (frame delivery thread)

    def _on_tick(self, tick: BrightnessTick) -> None:
        self._producer_ident = threading.get_ident()
        try:
            deliveries = self._process_tick(tick)
        except Exception:
            self._logger.exception("Tick %d processing failed; skipped", tick.frame_number)
            return
        for delivery in deliveries:
            try:
                delivery.instance._deliver(delivery.bits, delivery.raw, delivery.ready)
            except Exception:
                self._logger.exception("Delivery to generator %d failed", delivery.instance.id)

    def _process_tick(self, tick: BrightnessTick) -> List[_Delivery]:
        with self._lock:
            if not self._open or self._controller is None:
                return []
            now = self._clock()
            if self._settle_until is not None:
                if now < self._settle_until:
                    return []
                self._settle_until = None

            if self._calibrate(tick.samples, now):
                # samples taken under the old exposure are not comparable
                deliveries = []
                for instance in self._instances:
                    deliveries.append(_Delivery(instance, [], None, instance._invalidate()))
                return deliveries
            return [instance._collect(tick.samples) for instance in self._instances]

    def _calibrate(self, samples: Mapping[Coordinate, float], now: float) -> bool:
        """Feed the calibration average to the controller; ``True`` if exposure changed."""
        values = [samples[c] for c in self._calibration if c in samples]
        if not values:
            return False
        average = float(np.mean(values)) / self._config.exposure.full_scale
        state = self._controller.update(average, now)
        if state is None:
            return False
        if not self._source.apply_exposure(state):
            self._logger.warning("Frame source rejected exposure %s", state)
        self._settle_until = now + self._config.exposure.settle_s
        return True


class NoiseRng(RandomValues):
    """A generator instance: tracked pixels, a debiaser and a bit bus.

    Obtain one from :meth:`CameraSession.acquire`; release it with
    :meth:`close` (or use it as a context manager). Bits are emitted only
    while the instance is ready, i.e. every pixel holds a full window.
    """

    def __init__(
        self,
        session: CameraSession,
        instance_id: int,
        coordinates: Sequence[Coordinate],
        *,
        debias_method: DebiasMethod,
        reference: ReferenceMode,
    ) -> None:
        config = session.config
        self._session = session
        self.id = instance_id
        self._pixels = [TrackedPixel.create(c, config.sampling.window_size) for c in coordinates]
        self._coordinates = tuple(coordinates)
        self._reference = reference
        self._debiaser = Debiaser(
            debias_method,
            xor_group_size=config.debias.xor_group_size,
            csprng_factory=session._csprng_factory,
        )
        logger = session._logger
        capacity = config.bus.capacity_for(len(self._pixels))
        self._bits: BroadcastChannel[bool] = BroadcastChannel(capacity, name=f"bits-{instance_id}", logger=logger)
        self._raw: BroadcastChannel[List[float]] = BroadcastChannel(
            config.bus.min_buffer, name=f"raw-{instance_id}", logger=logger
        )
        self._ready = False
        self._released = False
        self._ready_cond = threading.Condition()
        self._listeners: List[ReadyListener] = []

    # ------------------------------------------------------------------
    # Public API

    @property
    def coordinates(self) -> Tuple[Coordinate, ...]:
        return self._coordinates

    @property
    def pixel_count(self) -> int:
        return len(self._coordinates)

    @property
    def session(self) -> CameraSession:
        return self._session

    @property
    def released(self) -> bool:
        return self._released

    @property
    def debias_method(self) -> DebiasMethod:
        return self._debiaser.method

    @debias_method.setter
    def debias_method(self, value: "str | DebiasMethod") -> None:
        method = DebiasMethod.parse(value)
        self._session._check_debias_fits(method, self.pixel_count)
        with self._session._lock:
            self._debiaser.method = method

    @property
    def reference(self) -> ReferenceMode:
        return self._reference

    @reference.setter
    def reference(self, value: "str | ReferenceMode") -> None:
        mode = ReferenceMode.parse(value)
        with self._session._lock:
            if mode is not self._reference:
                self._reference = mode
                self._debiaser.reset()

    @property
    def is_ready(self) -> bool:
        return self._ready

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until warmed up; returns ``False`` on timeout or release."""
        if self._ready:
            return True
        self._session.check_consumer_context()
        with self._ready_cond:
            self._ready_cond.wait_for(lambda: self._ready or self._released, timeout)
            return self._ready

    def add_ready_listener(self, listener: ReadyListener) -> None:
        """Call ``listener(instance, ready)`` on every readiness change.

        Listeners run on the frame delivery thread and must not block on
        this generator's values.
        """
        self._listeners.append(listener)

    def remove_ready_listener(self, listener: ReadyListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def raw_noise(self) -> Subscription[List[float]]:
        """Per-tick newest brightness of every pixel, before debiasing."""
        return self._raw.subscribe()

    def close(self) -> None:
        self._session.release(self)

    def __enter__(self) -> "NoiseRng":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"NoiseRng(id={self.id}, pixels={self.pixel_count}, debias={self.debias_method.value})"

    # ------------------------------------------------------------------
    # RandomValues

    def _bit_channel(self) -> BroadcastChannel[bool]:
        return self._bits

    def _check_blocking_allowed(self) -> None:
        self._session.check_consumer_context()
        super()._check_blocking_allowed()

    # ------------------------------------------------------------------
    # Session side (session lock held unless noted)

    def _collect(self, samples: Mapping[Coordinate, float]) -> _Delivery:
        raw_values: List[float] = []
        fresh: List[bool] = []
        for pixel in self._pixels:
            value = samples.get(pixel.coordinate)
            if value is None:
                fresh.append(False)
                continue
            pixel.history.append(float(value))
            raw_values.append(float(value))
            fresh.append(True)

        ready = all(pixel.full for pixel in self._pixels)
        changed = self._set_ready(ready)
        bits: List[bool] = []
        if ready:
            raw_bits = [
                raw_bit(pixel.history, self._reference) if is_fresh else None
                for pixel, is_fresh in zip(self._pixels, fresh)
            ]
            bits = self._debiaser.process(raw_bits)
        return _Delivery(self, bits, raw_values or None, changed)

    def _invalidate(self) -> Optional[bool]:
        for pixel in self._pixels:
            pixel.history.clear()
        self._debiaser.reset()
        return self._set_ready(False)

    def _set_ready(self, ready: bool) -> Optional[bool]:
        if ready == self._ready:
            return None
        with self._ready_cond:
            self._ready = ready
            self._ready_cond.notify_all()
        return ready

    def _deliver(self, bits: List[bool], raw: Optional[List[float]], ready: Optional[bool]) -> None:
        """Publish one tick's output; runs without the session lock."""
        if raw is not None:
            self._raw.publish(raw)
        if bits:
            self._bits.publish_many(bits)
        if ready is not None:
            for listener in list(self._listeners):
                try:
                    listener(self, ready)
                except Exception:
                    self._session._logger.exception("Ready listener failed for generator %d", self.id)

    def _shutdown(self) -> None:
        self._released = True
        self._bits.close()
        self._raw.close()
        with self._ready_cond:
            self._ready = False
            self._ready_cond.notify_all()


__all__ = [
    "ALL_PIXELS",
    "CALIBRATION_POINTS",
    "CameraSession",
    "NoiseRng",
    "TrackedPixel",
    "calibration_points",
]
