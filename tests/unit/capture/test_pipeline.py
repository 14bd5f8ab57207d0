"""Unit tests for ordered sample extraction."""

import logging
import random
import threading
import time

from camnoise.capture.pipeline import OrderedPipeline


class TestInline:
    """Zero workers: extraction runs on the submitting thread."""

    def test_delivers_in_submission_order(self):
        delivered = []
        threads = set()

        def deliver(result):
            delivered.append(result)
            threads.add(threading.get_ident())

        pipeline = OrderedPipeline(lambda frame: frame * 2, deliver)
        pipeline.start()

        for frame in range(5):
            pipeline.submit(frame)

        assert delivered == [0, 2, 4, 6, 8]
        assert threads == {threading.get_ident()}

    def test_none_result_is_not_delivered(self):
        delivered = []
        pipeline = OrderedPipeline(lambda frame: None if frame % 2 else frame, delivered.append)
        pipeline.start()

        for frame in range(4):
            pipeline.submit(frame)

        assert delivered == [0, 2]

    def test_failing_frame_is_skipped(self, caplog):
        delivered = []

        def extract(frame):
            if frame == 1:
                raise ValueError("corrupt frame")
            return frame

        pipeline = OrderedPipeline(extract, delivered.append)
        pipeline.start()

        with caplog.at_level(logging.ERROR):
            for frame in range(3):
                pipeline.submit(frame)

        assert delivered == [0, 2]
        assert "tick skipped" in caplog.text

    def test_submit_before_start_is_ignored(self):
        delivered = []
        pipeline = OrderedPipeline(lambda frame: frame, delivered.append)

        pipeline.submit(1)

        assert delivered == []


class TestWorkers:
    """Worker pool: parallel extraction, ordered delivery."""

    def test_order_preserved_with_uneven_work(self):
        delivered = []
        done = threading.Event()
        rng = random.Random(3)
        delays = [rng.uniform(0.0, 0.01) for _ in range(6)]

        def extract(frame):
            time.sleep(delays[frame])
            return frame

        def deliver(result):
            delivered.append(result)
            if len(delivered) == 6:
                done.set()

        pipeline = OrderedPipeline(extract, deliver, workers=3, max_in_flight=6)
        pipeline.start()
        try:
            for frame in range(6):
                pipeline.submit(frame)
            assert done.wait(5.0)
        finally:
            pipeline.stop()

        assert delivered == list(range(6))

    def test_delivery_on_single_dispatcher_thread(self):
        threads = set()
        done = threading.Event()

        def deliver(result):
            threads.add(threading.current_thread().name)
            if result == 3:
                done.set()

        pipeline = OrderedPipeline(lambda frame: frame, deliver, workers=2)
        pipeline.start()
        try:
            for frame in range(4):
                pipeline.submit(frame)
            assert done.wait(5.0)
        finally:
            pipeline.stop()

        assert threads == {"camnoise-dispatch"}

    def test_drops_whole_frames_when_saturated(self):
        release = threading.Event()
        delivered = []

        def extract(frame):
            release.wait(5.0)
            return frame

        pipeline = OrderedPipeline(extract, delivered.append, workers=1, max_in_flight=2)
        pipeline.start()
        try:
            for frame in range(5):
                pipeline.submit(frame)
            assert pipeline.dropped == 3
        finally:
            release.set()
            pipeline.stop()

    def test_stop_from_deliver_callback(self, caplog):
        stopped = threading.Event()
        errors = []
        pipeline = None

        def deliver(result):
            try:
                pipeline.stop()
            except Exception as exc:
                errors.append(exc)
            stopped.set()

        pipeline = OrderedPipeline(lambda frame: frame, deliver, workers=1)
        pipeline.start()
        with caplog.at_level(logging.ERROR):
            pipeline.submit(0)
            assert stopped.wait(5.0)
            time.sleep(0.05)

        assert errors == []
        assert "tick skipped" not in caplog.text
        assert pipeline._executor is None
        assert pipeline._dispatcher is None
        pipeline.submit(1)
        assert pipeline.dropped == 0

    def test_failing_frame_does_not_stall_later_frames(self):
        delivered = []
        done = threading.Event()

        def extract(frame):
            if frame == 0:
                raise RuntimeError("decode error")
            return frame

        def deliver(result):
            delivered.append(result)
            if result == 2:
                done.set()

        pipeline = OrderedPipeline(extract, deliver, workers=2)
        pipeline.start()
        try:
            for frame in range(3):
                pipeline.submit(frame)
            assert done.wait(5.0)
        finally:
            pipeline.stop()

        assert delivered == [1, 2]
