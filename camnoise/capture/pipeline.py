"""Sample extraction with an optional worker pool.

Extraction is a pure function of the frame, so it can run on several
workers when the host keeps up; results are still delivered one at a time
and in capture order from a single dispatcher thread.
"""

from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Deque, Generic, Optional, TypeVar

from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger

F = TypeVar("F")
R = TypeVar("R")


class OrderedPipeline(Generic[F, R]):
    """Runs ``extract`` on frames and hands results to ``deliver`` in order.

    With ``workers == 0`` everything happens inline on the submitting thread.
    A failing extraction or delivery skips that frame and is logged.
    """

    def __init__(
        self,
        extract: Callable[[F], Optional[R]],
        deliver: Callable[[R], None],
        *,
        workers: int = 0,
        max_in_flight: int = 8,
        logger: LoggerLike = None,
    ) -> None:
        self._extract = extract
        self._deliver = deliver
        self._workers = max(0, workers)
        self._max_in_flight = max(1, max_in_flight)
        self._logger = ensure_structured_logger(logger, fallback_name="OrderedPipeline")
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Deque[Future] = deque()
        self._cond = threading.Condition()
        self._dispatcher: Optional[threading.Thread] = None
        self._running = False
        self._dropped = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        if self._workers:
            self._executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="camnoise-extract")
            self._dispatcher = threading.Thread(target=self._dispatch_loop, name="camnoise-dispatch", daemon=True)
            self._dispatcher.start()

    def stop(self) -> None:
        with self._cond:
            self._running = False
            self._cond.notify_all()
        dispatcher, self._dispatcher = self._dispatcher, None
        # deliver may stop the pipeline from the dispatcher itself
        if dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join(timeout=2.0)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._pending.clear()

    @property
    def dropped(self) -> int:
        return self._dropped

    def submit(self, frame: F) -> None:
        if not self._running:
            return
        if self._executor is None:
            self._run_inline(frame)
            return
        with self._cond:
            if len(self._pending) >= self._max_in_flight:
                # the camera outpaces extraction; skip whole frames, never bits
                self._dropped += 1
                return
            self._pending.append(self._executor.submit(self._extract, frame))
            self._cond.notify_all()

    def _run_inline(self, frame: F) -> None:
        try:
            result = self._extract(frame)
            if result is not None:
                self._deliver(result)
        except Exception:
            self._logger.exception("Frame processing failed; tick skipped")

    def _dispatch_loop(self) -> None:
        while True:
            with self._cond:
                while self._running and not self._pending:
                    self._cond.wait(0.1)
                if not self._running:
                    return
                future = self._pending[0]
            try:
                result = future.result()
                if result is not None:
                    self._deliver(result)
            except Exception:
                self._logger.exception("Frame processing failed; tick skipped")
            finally:
                with self._cond:
                    if self._pending and self._pending[0] is future:
                        self._pending.popleft()


__all__ = ["OrderedPipeline"]
