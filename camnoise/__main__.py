"""Print random values drawn from camera noise.

Example::

    python -m camnoise --device 0 --pixels 16 --type uint32 --count 10
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from camnoise.config import CamNoiseConfig, as_dict, load_config, load_config_file_async
from camnoise.core.errors import CamNoiseError
from camnoise.core.logging_config import configure_from_settings
from camnoise.core.logging_utils import get_module_logger
from camnoise.rng.debias import DebiasMethod
from camnoise.rng.session import ALL_PIXELS, CameraSession
from camnoise.rng.values import ValueKind

logger = get_module_logger("CLI")

LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="camnoise", description="Random numbers from camera sensor noise")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional key = value configuration file; CLI arguments override it",
    )
    parser.add_argument("--device", type=str, default=None, help="Camera index or device path")
    parser.add_argument(
        "--pixels",
        type=int,
        default=16,
        help=f"Number of tracked pixels ({ALL_PIXELS} for every free pixel)",
    )
    parser.add_argument(
        "--type",
        dest="value_type",
        choices=[kind.label for kind in ValueKind],
        default=ValueKind.UINT32.label,
        help="Type of value to print",
    )
    parser.add_argument("--bound", type=int, default=None, help="Print uniform ints in [0, bound) instead")
    parser.add_argument("--count", type=int, default=10, help="Number of values to print")
    parser.add_argument(
        "--debias",
        choices=[method.value for method in DebiasMethod],
        default=None,
        help="Debiasing method",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to wait for each value")
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path to write logs",
    )
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "capture.device": args.device,
        "debias.method": args.debias,
        "logging.level": args.log_level,
        "logging.file": str(args.log_file) if args.log_file else None,
    }


async def _load(args: argparse.Namespace) -> CamNoiseConfig:
    if args.config is not None:
        return await load_config_file_async(args.config, _overrides(args))
    return load_config(overrides=_overrides(args))


def draw_values(session: CameraSession, args: argparse.Namespace) -> List[Any]:
    """Acquire a generator, wait for warm-up and draw ``args.count`` values."""
    values: List[Any] = []
    with session.acquire(args.pixels) as rng:
        if not rng.wait_until_ready(args.timeout):
            raise TimeoutError("generator did not warm up in time")
        if args.bound is not None:
            stream = rng.ints_below(args.bound)
        else:
            stream = rng.stream(ValueKind.from_label(args.value_type))
        with stream:
            for _ in range(args.count):
                values.append(stream.next(args.timeout))
    return values


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    if args.count <= 0:
        print("--count must be positive", file=sys.stderr)
        return 2

    try:
        config = await _load(args)
    except CamNoiseError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    configure_from_settings(config.logging)
    logger.debug("Configuration: %s", as_dict(config))

    from camnoise.capture.usb_source import USBFrameSource

    session = CameraSession(USBFrameSource.from_settings(config.capture), config)
    try:
        values = await asyncio.to_thread(draw_values, session, args)
    except (CamNoiseError, TimeoutError) as exc:
        logger.error("Drawing failed: %s", exc)
        return 1
    finally:
        session.reset()

    for value in values:
        print(value)
    return 0


def run(argv: Optional[Sequence[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(run())
