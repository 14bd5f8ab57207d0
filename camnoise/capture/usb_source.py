"""OpenCV camera frame source."""

import os
import sys

# Disable MSMF hardware transforms on Windows to fix slow camera initialization.
# See: https://github.com/opencv/opencv/issues/17687
if sys.platform == "win32":
    os.environ.setdefault("OPENCV_VIDEOIO_MSMF_ENABLE_HW_TRANSFORMS", "0")

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence, Tuple

import cv2
import numpy as np

from camnoise.capture.pipeline import OrderedPipeline
from camnoise.capture.source import BrightnessTick, Coordinate, FrameSource, TickCallback
from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger
from camnoise.rng.exposure import ExposureBounds, ExposureState, ParameterRange

if TYPE_CHECKING:
    from camnoise.config import CaptureSettings

GREEN_CHANNEL = 1


@dataclass(frozen=True, slots=True)
class _RawFrame:
    data: np.ndarray
    frame_number: int
    monotonic_ns: int
    wall_time: float
    coordinates: Tuple[Coordinate, ...]
    callback: Optional[TickCallback]


class USBFrameSource(FrameSource):
    """Samples the green channel at subscribed pixels of a V4L2/UVC camera.

    OpenCV does not report control ranges, so gain and exposure bounds come
    from configuration. Exposure times are handled in seconds and converted
    with ``exposure_unit_s`` (100 us per unit for V4L2 absolute exposure).
    """

    def __init__(
        self,
        device: int | str = 0,
        resolution: tuple[int, int] = (1280, 720),
        fps: float = 30.0,
        *,
        gain_range: Optional[Tuple[float, float]] = None,
        exposure_range: Optional[Tuple[float, float]] = None,
        exposure_unit_s: float = 1e-4,
        manual_exposure_value: float = 1.0,
        decode_workers: int = 0,
        logger: LoggerLike = None,
    ):
        self._device = device
        self._resolution = resolution
        self._fps = fps
        self._gain_range = gain_range
        self._exposure_range = exposure_range
        self._exposure_unit_s = exposure_unit_s
        self._manual_exposure_value = manual_exposure_value
        self._logger = ensure_structured_logger(logger, fallback_name="USBFrameSource")

        self._cap: Optional[cv2.VideoCapture] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._frame_number = 0
        self._lock = threading.Lock()
        self._coordinates: Tuple[Coordinate, ...] = ()
        self._callback: Optional[TickCallback] = None
        self._pipeline: OrderedPipeline[_RawFrame, Tuple[BrightnessTick, Optional[TickCallback]]] = OrderedPipeline(
            self._extract,
            self._deliver,
            workers=decode_workers,
            logger=self._logger,
        )

    @classmethod
    def from_settings(cls, settings: "CaptureSettings", *, logger: LoggerLike = None) -> "USBFrameSource":
        return cls(
            settings.device,
            settings.resolution,
            settings.fps,
            gain_range=settings.gain_range,
            exposure_range=settings.exposure_range,
            exposure_unit_s=settings.exposure_unit_s,
            decode_workers=settings.decode_workers,
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def frame_size(self) -> Tuple[int, int]:
        return self._resolution

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def open(self) -> None:
        device = self._device
        if isinstance(device, str) and device.isdigit():
            device = int(device)

        start_time = time.time()
        if sys.platform == "win32":
            self._cap = cv2.VideoCapture(device, cv2.CAP_MSMF)
        else:
            self._cap = cv2.VideoCapture(device)
        self._logger.debug("cv2.VideoCapture(%s) took %.2f seconds", device, time.time() - start_time)

        if not self._cap or not self._cap.isOpened():
            self._cap = None
            raise OSError(f"Failed to open camera: {self._device}")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._resolution[0])
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._resolution[1])
        self._cap.set(cv2.CAP_PROP_FPS, self._fps)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        # manual exposure so the controller owns brightness
        self._cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, self._manual_exposure_value)

        self._resolution = (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        self._logger.info(
            "Camera opened: device=%s, resolution=%dx%d, fps_hint=%.1f",
            self._device,
            *self._resolution,
            self._fps,
        )

    def start(self) -> None:
        if self._running:
            return
        if not self.is_open:
            self.open()
        self._running = True
        self._pipeline.start()
        self._thread = threading.Thread(target=self._capture_loop, name="camnoise-capture", daemon=True)
        self._thread.start()
        self._logger.debug("Capture thread started")

    def close(self) -> None:
        self._running = False
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        self._pipeline.stop()
        if self._cap:
            self._cap.release()
            self._cap = None
        with self._lock:
            self._coordinates = ()
            self._callback = None
        self._logger.info("Camera closed")

    def subscribe(self, coordinates: Sequence[Coordinate], callback: Optional[TickCallback]) -> None:
        with self._lock:
            self._coordinates = tuple(coordinates)
            self._callback = callback

    # ------------------------------------------------------------------
    # Exposure controls

    def hardware_bounds(self) -> ExposureBounds:
        gain = ParameterRange(*self._gain_range) if self._gain_range else None
        exposure = ParameterRange(*self._exposure_range) if self._exposure_range else None
        return ExposureBounds(gain=gain, exposure_time=exposure)

    def current_exposure(self) -> ExposureState:
        if not self._cap:
            return ExposureState()
        gain = float(self._cap.get(cv2.CAP_PROP_GAIN)) if self._gain_range else None
        exposure = None
        if self._exposure_range:
            exposure = float(self._cap.get(cv2.CAP_PROP_EXPOSURE)) * self._exposure_unit_s
        return ExposureState(gain=gain, exposure_time=exposure)

    def apply_exposure(self, state: ExposureState) -> bool:
        if not self._cap:
            return False
        ok = True
        if state.gain is not None:
            ok &= bool(self._cap.set(cv2.CAP_PROP_GAIN, float(state.gain)))
        if state.exposure_time is not None:
            units = state.exposure_time / self._exposure_unit_s
            ok &= bool(self._cap.set(cv2.CAP_PROP_EXPOSURE, float(units)))
        if not ok:
            self._logger.warning("Camera rejected exposure %s", state)
        return ok

    # ------------------------------------------------------------------
    # Capture

    def _capture_loop(self) -> None:
        while self._running and self._cap and self._cap.isOpened():
            ret, frame_data = self._cap.read()
            if not ret or frame_data is None:
                time.sleep(0.001)
                continue
            self._frame_number += 1
            with self._lock:
                coordinates = self._coordinates
                callback = self._callback
            self._pipeline.submit(
                _RawFrame(
                    data=frame_data,
                    frame_number=self._frame_number,
                    monotonic_ns=time.monotonic_ns(),
                    wall_time=time.time(),
                    coordinates=coordinates,
                    callback=callback,
                )
            )
        self._logger.debug("Capture loop ended: frames=%d", self._frame_number)

    @staticmethod
    def _extract(frame: _RawFrame) -> Optional[Tuple[BrightnessTick, Optional[TickCallback]]]:
        if frame.callback is None or not frame.coordinates:
            return None
        data = frame.data
        height, width = data.shape[:2]
        samples = {}
        for x, y in frame.coordinates:
            if 0 <= x < width and 0 <= y < height:
                pixel = data[y, x]
                samples[(x, y)] = float(pixel[GREEN_CHANNEL] if data.ndim == 3 else pixel)
        tick = BrightnessTick(
            samples=samples,
            frame_number=frame.frame_number,
            monotonic_ns=frame.monotonic_ns,
            wall_time=frame.wall_time,
        )
        return tick, frame.callback

    @staticmethod
    def _deliver(result: Tuple[BrightnessTick, Optional[TickCallback]]) -> None:
        tick, callback = result
        if callback is not None:
            callback(tick)

    @property
    def frame_count(self) -> int:
        return self._frame_number


__all__ = ["USBFrameSource"]
