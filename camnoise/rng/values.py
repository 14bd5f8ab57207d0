"""Typed values assembled from a bit channel.

Integers take ``width`` consecutive bits, most significant first. Fractions
take 24 (float) or 53 (double) bits and divide by ``2**width``, so they lie
in ``[0, 1)``. Streams subscribe when created and keep their own cursor;
calling a stream method again gives an independent stream over the bits
published from that moment on.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Generic, Optional, Sequence, TypeVar

from camnoise.core.errors import InvalidStateError, ProducerContextError
from camnoise.rng.bounded import INT_WIDTH, LONG_WIDTH, BoundedSampler
from camnoise.rng.bus import BroadcastChannel, Subscription

V = TypeVar("V")


class ValueKind(Enum):
    """Output types with the number of bits each value consumes."""

    BOOL = ("bool", 1)
    UINT8 = ("uint8", 8)
    UINT16 = ("uint16", 16)
    UINT32 = ("uint32", 32)
    UINT64 = ("uint64", 64)
    INT8 = ("int8", 8)
    INT16 = ("int16", 16)
    INT32 = ("int32", 32)
    INT64 = ("int64", 64)
    FLOAT = ("float", 24)
    DOUBLE = ("double", 53)

    def __init__(self, label: str, width: int) -> None:
        self.label = label
        self.width = width

    @classmethod
    def from_label(cls, label: str) -> "ValueKind":
        for kind in cls:
            if kind.label == label.lower():
                return kind
        raise ValueError(f"Unknown value kind '{label}'")

    def convert(self, raw: int):
        if self is ValueKind.BOOL:
            return bool(raw)
        if self in (ValueKind.FLOAT, ValueKind.DOUBLE):
            return raw / float(1 << self.width)
        if self.label.startswith("int"):
            return to_signed(raw, self.width)
        return raw


def assemble(bits: Sequence[bool]) -> int:
    """Pack ``bits`` MSB-first into an unsigned integer."""
    value = 0
    for bit in bits:
        value = (value << 1) | (1 if bit else 0)
    return value


def to_signed(raw: int, width: int) -> int:
    """Two's complement reinterpretation of an unsigned ``width``-bit value."""
    raw &= (1 << width) - 1
    if raw >> (width - 1):
        return raw - (1 << width)
    return raw


class ValueStream(Generic[V]):
    """Iterator of assembled values over a private subscription."""

    def __init__(
        self,
        subscription: Subscription[bool],
        width: int,
        convert: Callable[[int], V],
        *,
        accept: Optional[Callable[[V], Optional[V]]] = None,
        guard: Optional[Callable[[], None]] = None,
    ) -> None:
        self._subscription = subscription
        self._width = width
        self._convert = convert
        self._accept = accept
        self._guard = guard

    def __iter__(self) -> "ValueStream[V]":
        return self

    def __next__(self) -> V:
        return self.next()

    def next(self, timeout: Optional[float] = None) -> V:
        """Like ``next(stream)`` with an optional timeout in seconds."""
        while True:
            try:
                bits = self._subscription.take(self._width, timeout, on_wait=self._guard)
            except ProducerContextError:
                raise
            except InvalidStateError:
                raise StopIteration from None
            value = self._convert(assemble(bits))
            if self._accept is None:
                return value
            accepted = self._accept(value)
            if accepted is not None:
                return accepted

    def __enter__(self) -> "ValueStream[V]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self) -> None:
        # an abandoned stream must not keep back-pressuring the producer
        subscription = getattr(self, "_subscription", None)
        if subscription is not None:
            subscription.close()

    @property
    def closed(self) -> bool:
        return self._subscription.closed

    def close(self) -> None:
        self._subscription.close()


class RandomValues(ABC):
    """Typed random value API over a single bit channel.

    Subclasses supply :meth:`_bit_channel`; every stream and draw below is
    composed on that one channel so all consumers share one bit order.
    """

    @abstractmethod
    def _bit_channel(self) -> BroadcastChannel[bool]:
        raise NotImplementedError

    def _check_blocking_allowed(self) -> None:
        self._bit_channel().check_consumer_context()

    # ------------------------------------------------------------------
    # Streams

    def stream(self, kind: ValueKind) -> ValueStream:
        return ValueStream(
            self._bit_channel().subscribe(),
            kind.width,
            kind.convert,
            guard=self._check_blocking_allowed,
        )

    def booleans(self) -> ValueStream[bool]:
        return self.stream(ValueKind.BOOL)

    def uint8s(self) -> ValueStream[int]:
        return self.stream(ValueKind.UINT8)

    def uint16s(self) -> ValueStream[int]:
        return self.stream(ValueKind.UINT16)

    def uint32s(self) -> ValueStream[int]:
        return self.stream(ValueKind.UINT32)

    def uint64s(self) -> ValueStream[int]:
        return self.stream(ValueKind.UINT64)

    def floats(self) -> ValueStream[float]:
        return self.stream(ValueKind.FLOAT)

    def doubles(self) -> ValueStream[float]:
        return self.stream(ValueKind.DOUBLE)

    def ints_below(self, bound: int) -> ValueStream[int]:
        """Uniform ints in ``[0, bound)`` from 32-bit draws; rejected draws are skipped."""
        return self._bounded_stream(BoundedSampler(bound, INT_WIDTH))

    def longs_below(self, bound: int) -> ValueStream[int]:
        """Uniform ints in ``[0, bound)`` from 64-bit draws."""
        return self._bounded_stream(BoundedSampler(bound, LONG_WIDTH))

    def _bounded_stream(self, sampler: BoundedSampler) -> ValueStream[int]:
        return ValueStream(
            self._bit_channel().subscribe(),
            sampler.width,
            int,
            accept=sampler.accept,
            guard=self._check_blocking_allowed,
        )

    # ------------------------------------------------------------------
    # Single draws

    def draw(self, kind: ValueKind, timeout: Optional[float] = None):
        """Block until one value of ``kind`` is assembled."""
        with self._bit_channel().subscribe() as subscription:
            bits = subscription.take(kind.width, timeout, on_wait=self._check_blocking_allowed)
        return kind.convert(assemble(bits))

    def boolean(self, timeout: Optional[float] = None) -> bool:
        return self.draw(ValueKind.BOOL, timeout)

    def uint8(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.UINT8, timeout)

    def uint16(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.UINT16, timeout)

    def uint32(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.UINT32, timeout)

    def uint64(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.UINT64, timeout)

    def int8(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.INT8, timeout)

    def int16(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.INT16, timeout)

    def int32(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.INT32, timeout)

    def int64(self, timeout: Optional[float] = None) -> int:
        return self.draw(ValueKind.INT64, timeout)

    def float(self, timeout: Optional[float] = None) -> float:
        return self.draw(ValueKind.FLOAT, timeout)

    def double(self, timeout: Optional[float] = None) -> float:
        return self.draw(ValueKind.DOUBLE, timeout)

    def int_below(self, bound: int, timeout: Optional[float] = None) -> int:
        return self._bounded_draw(BoundedSampler(bound, INT_WIDTH), timeout)

    def long_below(self, bound: int, timeout: Optional[float] = None) -> int:
        return self._bounded_draw(BoundedSampler(bound, LONG_WIDTH), timeout)

    def _bounded_draw(self, sampler: BoundedSampler, timeout: Optional[float]) -> int:
        # one deadline covers every rejected draw
        deadline = None if timeout is None else time.monotonic() + timeout

        def next_word() -> int:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            return assemble(subscription.take(sampler.width, remaining, on_wait=self._check_blocking_allowed))

        with self._bit_channel().subscribe() as subscription:
            return sampler.draw(next_word)


__all__ = [
    "RandomValues",
    "ValueKind",
    "ValueStream",
    "assemble",
    "to_signed",
]
