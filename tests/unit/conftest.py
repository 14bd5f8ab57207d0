"""Unit test fixtures for isolated, fast test execution.

This file provides:
- A manual clock for code that takes a ``clock`` callable
- Scripted scenes and sessions over ``SyntheticFrameSource``
- A small Blum-Blum-Shub factory so tests never generate RSA keys
- An OpenCV patch for ``USBFrameSource`` tests
"""

from __future__ import annotations

import sys
import threading
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Set, Tuple
from unittest.mock import MagicMock, patch

import pytest

from camnoise.capture.synthetic import SyntheticFrameSource
from camnoise.config import CamNoiseConfig, load_config
from camnoise.rng.bbs import BlumBlumShub
from camnoise.rng.session import CameraSession

# 11 * 23, both congruent to 3 mod 4
SMALL_BLUM_MODULUS = 253


# =============================================================================
# Time Control Fixtures
# =============================================================================

class ManualClock:
    """Callable clock advanced explicitly by the test."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="function")
def manual_clock() -> ManualClock:
    """A clock starting at 0.0 that only moves when the test says so."""
    return ManualClock()


# =============================================================================
# Session Fixtures
# =============================================================================

FAST_SETTINGS: Dict[str, Any] = {
    "sampling.window_size": 2,
    "exposure.settle_s": 0,
    "exposure.cooldown_s": 0,
    "debias.method": "none",
    "bus.min_buffer": 256,
}


def make_config(**overrides: Any) -> CamNoiseConfig:
    """Config with a two-sample window and no settle/cooldown delays.

    Keyword names use ``__`` for the dot: ``sampling__window_size=4``.
    """
    values = dict(FAST_SETTINGS)
    values.update({key.replace("__", "."): value for key, value in overrides.items()})
    return load_config(values)


def small_csprng() -> BlumBlumShub:
    return BlumBlumShub(modulus=SMALL_BLUM_MODULUS, seed=3)


class ScriptedScene:
    """``sample_fn`` for SyntheticFrameSource.

    Calibration pixels read ``calibration_level``; every tracked pixel reads
    ``values[frame - 1]`` (cycled), or a per-pixel script from ``per_pixel``.
    """

    def __init__(self, values: Iterable[float] = (100.0, 110.0), calibration_level: float = 128.0) -> None:
        self.values: List[float] = list(values)
        self.calibration_level = calibration_level
        self.calibration: Set[Tuple[int, int]] = set()
        self.per_pixel: Dict[Tuple[int, int], List[float]] = {}

    def __call__(self, coordinate, frame_number, exposure) -> float:
        if coordinate in self.calibration:
            return self.calibration_level
        script = self.per_pixel.get(coordinate, self.values)
        return script[(frame_number - 1) % len(script)]


class SessionHarness:
    """A session over a manually ticked synthetic source."""

    def __init__(
        self,
        scene: ScriptedScene,
        *,
        frame_size: Tuple[int, int] = (1280, 720),
        config: Optional[CamNoiseConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        fail_open: bool = False,
        seed: int = 7,
    ) -> None:
        self.scene = scene
        self.source = SyntheticFrameSource(frame_size, sample_fn=scene, fps=0, fail_open=fail_open)
        kwargs: Dict[str, Any] = {"seed": seed, "csprng_factory": small_csprng}
        if clock is not None:
            kwargs["clock"] = clock
        self.session = CameraSession(self.source, config or make_config(), **kwargs)

    def acquire(self, *args, **kwargs):
        rng = self.session.acquire(*args, **kwargs)
        self.scene.calibration = set(self.session.calibration_coordinates)
        return rng

    def tick(self, count: int = 1) -> None:
        """Deliver ``count`` frames on this thread."""
        for _ in range(count):
            self.source.tick()

    def tick_in_thread(self, count: int = 1, timeout: float = 5.0) -> None:
        """Deliver frames from a helper thread so this thread may block on values."""
        worker = threading.Thread(target=self.tick, args=(count,), name="test-ticker")
        worker.start()
        worker.join(timeout)
        assert not worker.is_alive(), "ticker thread is stuck"


@pytest.fixture(scope="function")
def config_factory() -> Callable[..., CamNoiseConfig]:
    """Factory for fast configs, see :func:`make_config`."""
    return make_config


@pytest.fixture(scope="function")
def scene() -> ScriptedScene:
    return ScriptedScene()


@pytest.fixture(scope="function")
def harness_factory() -> Generator[Callable[..., SessionHarness], None, None]:
    """Build extra harnesses (custom frame size, clock, config); all reset afterwards.

    Example:
        def test_small_frame(harness_factory):
            h = harness_factory(ScriptedScene(), frame_size=(300, 300))
    """
    created: List[SessionHarness] = []

    def factory(scene: Optional[ScriptedScene] = None, **kwargs: Any) -> SessionHarness:
        harness = SessionHarness(scene or ScriptedScene(), **kwargs)
        created.append(harness)
        return harness

    yield factory
    for harness in created:
        harness.session.reset()


@pytest.fixture(scope="function")
def harness(scene: ScriptedScene) -> Generator[SessionHarness, None, None]:
    """Session with a 1280x720 scripted source; reset after the test."""
    harness = SessionHarness(scene)
    yield harness
    harness.session.reset()


# =============================================================================
# OpenCV Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def patch_cv2() -> Generator[MagicMock, None, None]:
    """Patch the cv2 module and reload ``camnoise.capture.usb_source`` against it.

    Yields:
        The patched cv2 module; ``VideoCapture`` returns an opened capture
        whose ``read`` yields a 640x480 BGR frame.
    """
    import importlib

    import numpy as np

    mock_cv2 = MagicMock()
    mock_cv2.CAP_PROP_FRAME_WIDTH = 3
    mock_cv2.CAP_PROP_FRAME_HEIGHT = 4
    mock_cv2.CAP_PROP_FPS = 5
    mock_cv2.CAP_PROP_BUFFERSIZE = 38
    mock_cv2.CAP_PROP_GAIN = 14
    mock_cv2.CAP_PROP_EXPOSURE = 15
    mock_cv2.CAP_PROP_AUTO_EXPOSURE = 21
    mock_cv2.CAP_MSMF = 1400

    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    properties = {3: 640.0, 4: 480.0, 14: 8.0, 15: 100.0}
    mock_capture = MagicMock()
    mock_capture.isOpened.return_value = True
    mock_capture.read.return_value = (True, frame)
    mock_capture.get.side_effect = lambda prop: properties.get(prop, 0.0)
    mock_capture.set.return_value = True
    mock_cv2.VideoCapture.return_value = mock_capture

    with patch.dict(sys.modules, {"cv2": mock_cv2}):
        module = importlib.import_module("camnoise.capture.usb_source")
        importlib.reload(module)
        yield mock_cv2
    sys.modules.pop("camnoise.capture.usb_source", None)
