"""Bias-free mapping of fixed-width random integers onto ``[0, bound)``.

Powers of two are scaled exactly: ``(bound * raw) >> width`` keeps the top
bits of ``raw``. Any other bound uses rejection sampling on the non-negative
half of the signed domain: with ``bits = raw >> 1`` and ``x = bits % bound``,
the draw is accepted only if ``bits - x + (bound - 1)`` still fits in the
signed range, which discards the incomplete last block of remainders.
"""

from __future__ import annotations

from typing import Callable, Iterable, Iterator, Optional

from camnoise.core.errors import InvalidArgumentError

INT_WIDTH = 32
LONG_WIDTH = 64


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


def max_bound(width: int) -> int:
    """Largest bound accepted for a ``width``-bit domain (its signed maximum)."""
    return (1 << (width - 1)) - 1


class BoundedSampler:
    """Maps raw unsigned ``width``-bit draws to uniform values below ``bound``."""

    __slots__ = ("bound", "width", "_signed_max", "_fast")

    def __init__(self, bound: int, width: int = INT_WIDTH) -> None:
        if width < 2:
            raise InvalidArgumentError(f"width must be at least 2 bits, got {width}")
        if bound <= 0:
            raise InvalidArgumentError(f"bound must be positive, got {bound}")
        if bound > max_bound(width):
            raise InvalidArgumentError(
                f"bound {bound} exceeds the {width}-bit signed maximum {max_bound(width)}"
            )
        self.bound = bound
        self.width = width
        self._signed_max = max_bound(width)
        self._fast = is_power_of_two(bound)

    @property
    def uses_fast_path(self) -> bool:
        return self._fast

    def accept(self, raw: int) -> Optional[int]:
        """Return the bounded value for ``raw``, or ``None`` if it must be redrawn."""
        raw &= (1 << self.width) - 1
        if self._fast:
            return (self.bound * raw) >> self.width
        bits = raw >> 1
        x = bits % self.bound
        if bits - x + (self.bound - 1) > self._signed_max:
            return None
        return x

    def draw(self, next_raw: Callable[[], int]) -> int:
        """Pull raw values from ``next_raw`` until one is accepted."""
        while True:
            value = self.accept(next_raw())
            if value is not None:
                return value

    def stream(self, raws: Iterable[int]) -> Iterator[int]:
        """Lazily map ``raws``, silently skipping rejected draws."""
        for raw in raws:
            value = self.accept(raw)
            if value is not None:
                yield value


__all__ = [
    "BoundedSampler",
    "INT_WIDTH",
    "LONG_WIDTH",
    "is_power_of_two",
    "max_bound",
]
