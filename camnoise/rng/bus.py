"""Single-producer, multi-consumer broadcast channel.

Every subscription attached before an item is published receives that item
exactly once and in publication order. Each subscription owns a bounded
queue; when any open queue is full the producer blocks until the slow
consumer catches up or closes, so nothing is dropped.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Generic, Iterable, Iterator, List, Optional, TypeVar

from camnoise.core.errors import InvalidArgumentError, InvalidStateError, ProducerContextError
from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger

T = TypeVar("T")


class Subscription(Generic[T]):
    """Read cursor on a :class:`BroadcastChannel`."""

    def __init__(self, channel: "BroadcastChannel[T]") -> None:
        self._channel = channel
        self._queue: Deque[T] = deque()
        self._closed = False

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        try:
            return self.get()
        except InvalidStateError:
            raise StopIteration from None

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        with self._channel._cond:
            return len(self._queue)

    def get(self, timeout: Optional[float] = None, *, on_wait: Optional[Callable[[], None]] = None) -> T:
        """Block until the next item arrives.

        Raises ``InvalidStateError`` once the subscription or its channel is
        closed and nothing is left to read, ``TimeoutError`` on timeout.
        ``on_wait`` runs before the first wait and may raise to refuse it.
        """
        cond = self._channel._cond
        deadline = None if timeout is None else time.monotonic() + timeout
        with cond:
            while not self._queue:
                if self._closed or self._channel._closed:
                    raise InvalidStateError(f"channel '{self._channel.name}' is closed")
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise TimeoutError(f"no item on '{self._channel.name}' within {timeout}s")
                if on_wait is not None:
                    on_wait()
                    on_wait = None
                cond.wait(remaining)
            item = self._queue.popleft()
            cond.notify_all()
            return item

    def take(
        self,
        count: int,
        timeout: Optional[float] = None,
        *,
        on_wait: Optional[Callable[[], None]] = None,
    ) -> List[T]:
        """Read exactly ``count`` consecutive items."""
        deadline = None if timeout is None else time.monotonic() + timeout
        items: List[T] = []
        while len(items) < count:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            items.append(self.get(remaining, on_wait=on_wait))
        return items

    def close(self) -> None:
        self._channel._detach(self)


class BroadcastChannel(Generic[T]):
    """Bounded fan-out of one ordered stream to any number of subscribers."""

    def __init__(self, capacity: int, *, name: str = "bits", logger: LoggerLike = None) -> None:
        if capacity <= 0:
            raise InvalidArgumentError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self.name = name
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._cond = threading.Condition()
        self._subscriptions: List[Subscription[T]] = []
        self._closed = False
        self._published = 0
        self._producer_ident: Optional[int] = None

    # ------------------------------------------------------------------
    # Consumer side

    def subscribe(self) -> Subscription[T]:
        with self._cond:
            if self._closed:
                raise InvalidStateError(f"channel '{self.name}' is closed")
            subscription: Subscription[T] = Subscription(self)
            self._subscriptions.append(subscription)
            return subscription

    def _detach(self, subscription: Subscription[T]) -> None:
        with self._cond:
            if subscription._closed:
                return
            subscription._closed = True
            subscription._queue.clear()
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            self._cond.notify_all()

    def check_consumer_context(self) -> None:
        """Fail fast when a blocking read would wait on its own producer."""
        if self._producer_ident is not None and threading.get_ident() == self._producer_ident:
            raise ProducerContextError(
                f"blocking read on '{self.name}' from the thread that produces it would deadlock"
            )

    # ------------------------------------------------------------------
    # Producer side

    def bind_producer(self, ident: Optional[int] = None) -> None:
        """Record the producing thread (defaults to the calling thread)."""
        self._producer_ident = threading.get_ident() if ident is None else ident

    def publish(self, item: T) -> None:
        self.publish_many((item,))

    def publish_many(self, items: Iterable[T]) -> int:
        """Append ``items`` to every open subscription, waiting for room."""
        self._producer_ident = threading.get_ident()
        count = 0
        with self._cond:
            for item in items:
                while not self._closed and self._full():
                    # wake readers of the part of the batch already queued
                    self._cond.notify_all()
                    self._cond.wait()
                if self._closed:
                    break
                for subscription in self._subscriptions:
                    subscription._queue.append(item)
                count += 1
            self._published += count
            if count:
                self._cond.notify_all()
        return count

    def _full(self) -> bool:
        return any(len(sub._queue) >= self._capacity for sub in self._subscriptions)

    def close(self) -> None:
        """Stop accepting items; subscribers drain what is queued, then stop."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        self._logger.debug("Channel '%s' closed after %d item(s)", self.name, self._published)

    # ------------------------------------------------------------------
    # Introspection

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        with self._cond:
            return len(self._subscriptions)

    @property
    def published(self) -> int:
        return self._published


BitBus = BroadcastChannel[bool]


__all__ = ["BitBus", "BroadcastChannel", "Subscription"]
