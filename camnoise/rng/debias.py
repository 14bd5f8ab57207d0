"""Raw bit extraction and whitening.

A raw bit compares a pixel's newest brightness with a reference sample:
``True`` when brighter, ``False`` when darker, nothing on a tie. The
:class:`Debiaser` then whitens raw bits with the selected method before they
are published.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from camnoise.core.errors import InvalidArgumentError
from camnoise.rng.bbs import BlumBlumShub


class DebiasMethod(str, Enum):
    VON_NEUMANN = "von_neumann"
    INTERFRAME_VON_NEUMANN = "interframe_von_neumann"
    INTERPIXEL_XOR = "interpixel_xor"
    XOR_WITH_CSPRNG = "xor_csprng"
    NONE = "none"

    @classmethod
    def parse(cls, value: "str | DebiasMethod") -> "DebiasMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise InvalidArgumentError(f"Unknown debias method '{value}' (expected one of {choices})") from None


class ReferenceMode(str, Enum):
    """Which sample the newest one is compared with."""

    PREVIOUS = "previous"
    WINDOW_START = "window_start"
    MEDIAN = "median"

    @classmethod
    def parse(cls, value: "str | ReferenceMode") -> "ReferenceMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise InvalidArgumentError(f"Unknown reference mode '{value}' (expected one of {choices})") from None


def raw_bit(history: Sequence[float], reference: ReferenceMode = ReferenceMode.PREVIOUS) -> Optional[bool]:
    """Compare the newest sample of ``history`` with its reference; ``None`` on a tie."""
    if not history:
        return None
    newest = history[-1]
    if reference is ReferenceMode.MEDIAN:
        ref = float(np.median(np.asarray(history, dtype=np.float64)))
    else:
        if len(history) < 2:
            return None
        ref = history[-2] if reference is ReferenceMode.PREVIOUS else history[0]
    if newest > ref:
        return True
    if newest < ref:
        return False
    return None


class Debiaser:
    """Stateful whitening of raw bits for one generator instance.

    ``process`` takes one tick's raw bits in pixel order (``None`` for pixels
    that tied) and returns the whitened bits to publish, in order.
    """

    def __init__(
        self,
        method: DebiasMethod = DebiasMethod.VON_NEUMANN,
        *,
        xor_group_size: int = 2,
        csprng_factory: Optional[Callable[[], BlumBlumShub]] = None,
    ) -> None:
        if xor_group_size < 2:
            raise InvalidArgumentError(f"xor_group_size must be at least 2, got {xor_group_size}")
        self._method = DebiasMethod.parse(method)
        self._xor_group_size = xor_group_size
        self._csprng_factory = csprng_factory or BlumBlumShub
        self._csprng: Optional[BlumBlumShub] = None
        self._pending: Optional[bool] = None
        self._previous_window: Dict[int, bool] = {}
        self._xor_buffer: Dict[int, bool] = {}

    @property
    def method(self) -> DebiasMethod:
        return self._method

    @method.setter
    def method(self, value: "str | DebiasMethod") -> None:
        method = DebiasMethod.parse(value)
        if method is not self._method:
            self._method = method
            self.reset()

    def reset(self) -> None:
        """Forget half-formed pairs and groups; the CSPRNG keeps its state."""
        self._pending = None
        self._previous_window.clear()
        self._xor_buffer.clear()

    def process(self, raw_bits: Sequence[Optional[bool]]) -> List[bool]:
        out: List[bool] = []
        for index, bit in enumerate(raw_bits):
            if bit is None:
                continue
            emitted = self.feed(bit, index)
            if emitted is not None:
                out.append(emitted)
        return out

    def feed(self, bit: bool, pixel: int = 0) -> Optional[bool]:
        """Whiten one raw bit from ``pixel``; returns the emitted bit, if any."""
        method = self._method
        if method is DebiasMethod.NONE:
            return bit
        if method is DebiasMethod.XOR_WITH_CSPRNG:
            return bit != bool(self._generator().next_bit())
        if method is DebiasMethod.VON_NEUMANN:
            if self._pending is None:
                self._pending = bit
                return None
            first, self._pending = self._pending, None
            return first if first != bit else None
        if method is DebiasMethod.INTERFRAME_VON_NEUMANN:
            first = self._previous_window.pop(pixel, None)
            if first is None:
                self._previous_window[pixel] = bit
                return None
            return first if first != bit else None
        # interpixel XOR: a repeated pixel replaces its stale bit
        self._xor_buffer[pixel] = bit
        if len(self._xor_buffer) < self._xor_group_size:
            return None
        result = False
        for value in self._xor_buffer.values():
            result ^= value
        self._xor_buffer.clear()
        return result

    def _generator(self) -> BlumBlumShub:
        if self._csprng is None:
            self._csprng = self._csprng_factory()
        return self._csprng


__all__ = ["DebiasMethod", "Debiaser", "ReferenceMode", "raw_bit"]
