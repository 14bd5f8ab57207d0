"""Typed configuration helpers for camnoise."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from camnoise.core.config_manager import get_config_manager
from camnoise.core.errors import InvalidArgumentError
from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger
from camnoise.defaults import (
    DEFAULT_BUFFER_PER_PIXEL,
    DEFAULT_CALIBRATION_MARGIN,
    DEFAULT_CAPTURE_FPS,
    DEFAULT_CAPTURE_RESOLUTION,
    DEFAULT_COOLDOWN_S,
    DEFAULT_CSPRNG_BITS,
    DEFAULT_DEBIAS_METHOD,
    DEFAULT_DECODE_WORKERS,
    DEFAULT_DEVICE,
    DEFAULT_FULL_SCALE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_EXPOSURE_TIME,
    DEFAULT_MIN_BUFFER,
    DEFAULT_MIN_PIXEL_DISTANCE,
    DEFAULT_PIXEL_ATTEMPTS,
    DEFAULT_REFERENCE,
    DEFAULT_SETTLE_S,
    DEFAULT_TARGET_HIGH,
    DEFAULT_TARGET_LOW,
    DEFAULT_WINDOW_SIZE,
    DEFAULT_XOR_GROUP_SIZE,
)
from camnoise.rng.debias import DebiasMethod, ReferenceMode

Resolution = Tuple[int, int]
Range = Tuple[float, float]


@dataclass(slots=True)
class CaptureSettings:
    device: str
    resolution: Resolution
    fps: float
    decode_workers: int
    gain_range: Optional[Range] = None
    exposure_range: Optional[Range] = None
    exposure_unit_s: float = 1e-4


@dataclass(slots=True)
class SamplingSettings:
    window_size: int
    min_pixel_distance: int
    pixel_attempts: int
    calibration_margin: int
    reference: ReferenceMode


@dataclass(slots=True)
class ExposureSettings:
    target_low: float
    target_high: float
    cooldown_s: float
    settle_s: float
    max_exposure_time: Optional[float]
    full_scale: float


@dataclass(slots=True)
class DebiasSettings:
    method: DebiasMethod
    xor_group_size: int
    csprng_bits: int


@dataclass(slots=True)
class BusSettings:
    buffer_per_pixel: int
    min_buffer: int

    def capacity_for(self, pixel_count: int) -> int:
        return max(self.min_buffer, self.buffer_per_pixel * max(1, pixel_count))


@dataclass(slots=True)
class LoggingSettings:
    level: str
    file: Optional[Path]


@dataclass(slots=True)
class CamNoiseConfig:
    capture: CaptureSettings
    sampling: SamplingSettings
    exposure: ExposureSettings
    debias: DebiasSettings
    bus: BusSettings
    logging: LoggingSettings


# ---------------------------------------------------------------------------
# Public API


def load_config(
    values: Optional[Dict[str, Any]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> CamNoiseConfig:
    """Build a typed config from a flat dotted-key mapping plus overrides.

    Unparseable values fall back to defaults; values that parse but make no
    sense (a non-positive pixel distance, an empty target band) raise
    ``InvalidArgumentError``.
    """

    log = ensure_structured_logger(logger, fallback_name="Config")
    merged: Dict[str, Any] = dict(values or {})
    if overrides:
        for key, value in overrides.items():
            if value is not None:
                merged[key] = value

    capture = CaptureSettings(
        device=_coerce_str(merged, ("capture.device", "device"), str(DEFAULT_DEVICE)),
        resolution=_coerce_resolution(
            merged, ("capture.resolution", "resolution"), default=DEFAULT_CAPTURE_RESOLUTION, logger=log
        ),
        fps=_coerce_float(merged, ("capture.fps", "fps"), DEFAULT_CAPTURE_FPS),
        decode_workers=_coerce_int(merged, ("capture.decode_workers",), DEFAULT_DECODE_WORKERS),
        gain_range=_coerce_range(merged, ("capture.gain_range",), logger=log),
        exposure_range=_coerce_range(merged, ("capture.exposure_range",), logger=log),
        exposure_unit_s=_coerce_float(merged, ("capture.exposure_unit_s",), 1e-4),
    )

    sampling = SamplingSettings(
        window_size=_coerce_int(merged, ("sampling.window_size",), DEFAULT_WINDOW_SIZE),
        min_pixel_distance=_coerce_int(merged, ("sampling.min_pixel_distance",), DEFAULT_MIN_PIXEL_DISTANCE),
        pixel_attempts=_coerce_int(merged, ("sampling.pixel_attempts",), DEFAULT_PIXEL_ATTEMPTS),
        calibration_margin=_coerce_int(merged, ("sampling.calibration_margin",), DEFAULT_CALIBRATION_MARGIN),
        reference=ReferenceMode.parse(_coerce_str(merged, ("sampling.reference",), DEFAULT_REFERENCE)),
    )

    exposure = ExposureSettings(
        target_low=_coerce_float(merged, ("exposure.target_low",), DEFAULT_TARGET_LOW),
        target_high=_coerce_float(merged, ("exposure.target_high",), DEFAULT_TARGET_HIGH),
        cooldown_s=_coerce_float(merged, ("exposure.cooldown_s",), DEFAULT_COOLDOWN_S),
        settle_s=_coerce_float(merged, ("exposure.settle_s",), DEFAULT_SETTLE_S),
        max_exposure_time=_coerce_optional_float(
            merged, ("exposure.max_exposure_time",), DEFAULT_MAX_EXPOSURE_TIME, logger=log
        ),
        full_scale=_coerce_float(merged, ("exposure.full_scale",), DEFAULT_FULL_SCALE),
    )

    debias = DebiasSettings(
        method=DebiasMethod.parse(_coerce_str(merged, ("debias.method", "debias_method"), DEFAULT_DEBIAS_METHOD)),
        xor_group_size=_coerce_int(merged, ("debias.xor_group_size",), DEFAULT_XOR_GROUP_SIZE),
        csprng_bits=_coerce_int(merged, ("debias.csprng_bits",), DEFAULT_CSPRNG_BITS),
    )

    bus = BusSettings(
        buffer_per_pixel=_coerce_int(merged, ("bus.buffer_per_pixel",), DEFAULT_BUFFER_PER_PIXEL),
        min_buffer=_coerce_int(merged, ("bus.min_buffer",), DEFAULT_MIN_BUFFER),
    )

    log_file = _coerce_str(merged, ("logging.file", "log_file"), "")
    logging_settings = LoggingSettings(
        level=_coerce_str(merged, ("logging.level", "log_level"), DEFAULT_LOG_LEVEL),
        file=Path(log_file) if log_file else None,
    )

    config = CamNoiseConfig(
        capture=capture,
        sampling=sampling,
        exposure=exposure,
        debias=debias,
        bus=bus,
        logging=logging_settings,
    )
    validate_config(config)
    return config


def load_config_file(path: Path, overrides: Optional[Dict[str, Any]] = None, *, logger: LoggerLike = None) -> CamNoiseConfig:
    """Read a ``key = value`` file with :class:`ConfigManager` and type it."""
    values = get_config_manager().read_config(Path(path))
    return load_config(values, overrides, logger=logger)


async def load_config_file_async(
    path: Path,
    overrides: Optional[Dict[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> CamNoiseConfig:
    values = await get_config_manager().read_config_async(Path(path))
    return load_config(values, overrides, logger=logger)


def validate_config(config: CamNoiseConfig) -> None:
    sampling, exposure = config.sampling, config.exposure
    if sampling.min_pixel_distance <= 0:
        raise InvalidArgumentError(f"min_pixel_distance must be positive, got {sampling.min_pixel_distance}")
    if sampling.window_size < 2:
        raise InvalidArgumentError(f"window_size must be at least 2, got {sampling.window_size}")
    if sampling.pixel_attempts <= 0:
        raise InvalidArgumentError(f"pixel_attempts must be positive, got {sampling.pixel_attempts}")
    if not 0.0 <= exposure.target_low < exposure.target_high <= 1.0:
        raise InvalidArgumentError(
            f"exposure target band must satisfy 0 <= low < high <= 1, got [{exposure.target_low}, {exposure.target_high}]"
        )
    if exposure.full_scale <= 0:
        raise InvalidArgumentError(f"full_scale must be positive, got {exposure.full_scale}")
    if config.debias.xor_group_size < 2:
        raise InvalidArgumentError(f"xor_group_size must be at least 2, got {config.debias.xor_group_size}")
    if config.bus.buffer_per_pixel <= 0 or config.bus.min_buffer <= 0:
        raise InvalidArgumentError("bus buffer sizes must be positive")


def as_dict(config: CamNoiseConfig) -> Dict[str, Any]:
    """Return a nested dict representation (useful for logging)."""

    return {
        "capture": asdict(config.capture),
        "sampling": {**asdict(config.sampling), "reference": config.sampling.reference.value},
        "exposure": asdict(config.exposure),
        "debias": {**asdict(config.debias), "method": config.debias.method.value},
        "bus": asdict(config.bus),
        "logging": {
            "level": config.logging.level,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


# ---------------------------------------------------------------------------
# Internal helpers


def _coerce_str(data: Dict[str, Any], keys: Tuple[str, ...], default: str) -> str:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    text = str(raw).strip()
    return text or default


def _coerce_int(data: Dict[str, Any], keys: Tuple[str, ...], default: int) -> int:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _coerce_float(data: Dict[str, Any], keys: Tuple[str, ...], default: float) -> float:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _coerce_optional_float(
    data: Dict[str, Any],
    keys: Tuple[str, ...],
    default: Optional[float],
    *,
    logger,
) -> Optional[float]:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    if raw == "" or raw is False or str(raw).strip().lower() == "none":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.debug("Failed to parse float from %r, using default %s", raw, default)
        return default


def _coerce_resolution(
    data: Dict[str, Any],
    keys: Tuple[str, ...],
    *,
    default: Resolution,
    logger,
) -> Resolution:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    try:
        return _parse_pair(raw, int)
    except (TypeError, ValueError):
        logger.debug("Failed to parse resolution from %r, using default %s", raw, default)
        return default


def _coerce_range(data: Dict[str, Any], keys: Tuple[str, ...], *, logger) -> Optional[Range]:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return None
    try:
        low, high = _parse_pair(raw, float)
    except (TypeError, ValueError):
        logger.debug("Failed to parse range from %r, ignoring", raw)
        return None
    if low > high:
        logger.debug("Range %r has lower > upper, ignoring", raw)
        return None
    return low, high


def _parse_pair(raw: Any, kind):
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return kind(raw[0]), kind(raw[1])
    if isinstance(raw, str):
        for separator in ("x", ",", ":"):
            if separator in raw.lower():
                first, second = raw.lower().split(separator, 1)
                return kind(first.strip()), kind(second.strip())
    raise ValueError(f"Unsupported pair value: {raw!r}")


def _first_present(data: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data.get(key)
    return None


__all__ = [
    "BusSettings",
    "CamNoiseConfig",
    "CaptureSettings",
    "DebiasSettings",
    "ExposureSettings",
    "LoggingSettings",
    "SamplingSettings",
    "as_dict",
    "load_config",
    "load_config_file",
    "load_config_file_async",
    "validate_config",
]
