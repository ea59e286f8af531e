"""
Tests for backends/local_backend.py and the shared helpers in backends/base.py.

Covers:
  - classification → whole-image candidates, confidence floor, result cap
  - localization → bounding-box candidates listed first
  - engine fault → Failure(LOCAL_RECOGNITION_ERROR); localizer fault ignored
  - cancellation before start and while the engine is still running
  - the default engine is loaded once, even for concurrent first requests
  - run_cancellable(), BackendOutcome.success() with no candidates
"""
from __future__ import annotations

import asyncio
import threading
import time
from unittest.mock import patch

import pytest

from backends.base import (
    BackendOutcome, BoundingBox, CancelToken, OutcomeStatus, RawCandidate, run_cancellable,
)
from backends.local_backend import LocalBackend, Observation, RecognitionEngine
from errors import DetectionCancelled, ErrorKind
from region import ImageRegion, Size


class FakeEngine(RecognitionEngine):
    name = "fake"

    def __init__(self, classifications=(), objects=(), classify_error=None, localize_error=None):
        self.classifications = list(classifications)
        self.objects = list(objects)
        self.classify_error = classify_error
        self.localize_error = localize_error
        self.seen_sizes = []

    def classify(self, image):
        self.seen_sizes.append(image.size)
        if self.classify_error:
            raise self.classify_error
        return self.classifications

    def localize(self, image):
        if self.localize_error:
            raise self.localize_error
        return self.objects


class BlockingEngine(RecognitionEngine):
    """classify() blocks its worker thread until released."""
    name = "blocking"

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()

    def classify(self, image):
        self.started.set()
        self.release.wait(timeout=5)
        return [Observation("late answer", 0.9)]


FULL = ImageRegion.full(Size(400, 300))


# ── LocalBackend ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestLocalBackend:
    async def test_classifications_become_candidates(self, image):
        engine = FakeEngine(classifications=[
            Observation("coffee mug", 0.8, alternates=("cup", "drinkware", "tableware", "kitchen")),
            Observation("teapot", 0.1),
        ])
        outcome = await LocalBackend(engine).detect(FULL, image)

        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.backend == "local/fake"
        assert [c.label for c in outcome.candidates] == ["coffee mug"]
        assert outcome.candidates[0].bounding_box is None
        assert outcome.candidates[0].alternate_labels == ("cup", "drinkware", "tableware")

    async def test_confidence_floor_is_configurable(self, image):
        engine = FakeEngine(classifications=[Observation("teapot", 0.1)])
        outcome = await LocalBackend(engine, confidence_floor=0.05).detect(FULL, image)
        assert [c.label for c in outcome.candidates] == ["teapot"]

    async def test_everything_below_floor_is_empty(self, image):
        engine = FakeEngine(classifications=[Observation("teapot", 0.01)])
        outcome = await LocalBackend(engine).detect(FULL, image)
        assert outcome.status is OutcomeStatus.EMPTY

    async def test_classifications_capped(self, image):
        engine = FakeEngine(classifications=[Observation(f"thing {i}", 0.5) for i in range(30)])
        outcome = await LocalBackend(engine, max_results=4).detect(FULL, image)
        assert len(outcome.candidates) == 4

    async def test_localized_objects_listed_first(self, image):
        box = BoundingBox(0.25, 0.25, 0.5, 0.5)
        engine = FakeEngine(
            classifications=[Observation("kitchen", 0.95)],
            objects=[Observation("mug", 0.4, bounding_box=box)],
        )
        outcome = await LocalBackend(engine).detect(FULL, image)
        assert [c.label for c in outcome.candidates] == ["mug", "kitchen"]
        assert outcome.candidates[0].bounding_box == box

    async def test_engine_sees_cropped_region(self, image):
        engine = FakeEngine(classifications=[Observation("mug", 0.9)])
        await LocalBackend(engine).detect(ImageRegion(100, 75, 200, 150), image)
        assert engine.seen_sizes == [(200, 150)]

    async def test_engine_fault_is_local_recognition_error(self, image):
        engine = FakeEngine(classify_error=RuntimeError("model exploded"))
        outcome = await LocalBackend(engine).detect(FULL, image)

        assert outcome.status is OutcomeStatus.FAILURE
        assert outcome.error is ErrorKind.LOCAL_RECOGNITION_ERROR
        assert "model exploded" in outcome.message

    async def test_localizer_fault_falls_back_to_classification(self, image):
        engine = FakeEngine(
            classifications=[Observation("mug", 0.7)],
            localize_error=RuntimeError("detector missing"),
        )
        outcome = await LocalBackend(engine).detect(FULL, image)
        assert outcome.ok
        assert [c.label for c in outcome.candidates] == ["mug"]

    async def test_already_cancelled_never_calls_engine(self, image):
        engine = FakeEngine(classifications=[Observation("mug", 0.7)])
        cancel = CancelToken()
        cancel.cancel()

        outcome = await LocalBackend(engine).detect(FULL, image, cancel)

        assert outcome.cancelled
        assert engine.seen_sizes == []

    async def test_default_engine_loaded_once_under_concurrency(self, image):
        def slow_load():
            time.sleep(0.1)
            return FakeEngine(classifications=[Observation("mug", 0.9)])

        backend = LocalBackend()
        with patch("backends.local_backend._default_engine", side_effect=slow_load) as load:
            outcomes = await asyncio.gather(*(backend.detect(FULL, image) for _ in range(4)))

        assert load.call_count == 1
        assert all(o.ok for o in outcomes)
        assert backend.name == "local/fake"

    async def test_cancel_while_engine_runs(self, image):
        engine = BlockingEngine()
        backend = LocalBackend(engine)
        cancel = CancelToken()

        task = asyncio.create_task(backend.detect(FULL, image, cancel))
        await asyncio.to_thread(engine.started.wait, 5)
        cancel.cancel()
        outcome = await asyncio.wait_for(task, timeout=2)
        engine.release.set()

        assert outcome.status is OutcomeStatus.FAILURE
        assert outcome.error is ErrorKind.CANCELLED


# ── Shared helpers ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestRunCancellable:
    async def test_returns_result_without_token(self):
        async def work():
            return 42
        assert await run_cancellable(work(), None) == 42

    async def test_returns_result_when_not_cancelled(self):
        async def work():
            return "done"
        assert await run_cancellable(work(), CancelToken()) == "done"

    async def test_pre_cancelled_raises(self):
        async def work():
            return "never"
        cancel = CancelToken()
        cancel.cancel()
        with pytest.raises(DetectionCancelled):
            await run_cancellable(work(), cancel)

    async def test_cancel_during_work_raises(self):
        cancel = CancelToken()

        async def work():
            await asyncio.sleep(10)

        asyncio.get_running_loop().call_later(0.05, cancel.cancel)
        with pytest.raises(DetectionCancelled):
            await run_cancellable(work(), cancel)

    async def test_work_abandoned_after_outer_timeout(self):
        finished = asyncio.Event()

        async def work():
            await asyncio.sleep(0.2)
            finished.set()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(run_cancellable(work(), CancelToken()), timeout=0.05)
        await asyncio.sleep(0.3)
        assert not finished.is_set()

    async def test_work_abandoned_when_caller_cancelled(self):
        finished = asyncio.Event()

        async def work():
            await asyncio.sleep(0.2)
            finished.set()

        task = asyncio.create_task(run_cancellable(work(), CancelToken()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.3)
        assert not finished.is_set()

    async def test_work_errors_propagate(self):
        async def work():
            raise KeyError("boom")
        with pytest.raises(KeyError):
            await run_cancellable(work(), CancelToken())


class TestOutcome:
    def test_success_without_candidates_is_empty(self):
        assert BackendOutcome.success("local", []).status is OutcomeStatus.EMPTY

    def test_confidence_outside_unit_interval_rejected(self):
        with pytest.raises(ValueError):
            RawCandidate("mug", 1.5)

    def test_bounding_box_outside_unit_square_rejected(self):
        with pytest.raises(ValueError):
            BoundingBox(0.8, 0.1, 0.5, 0.5)

    def test_describe_failure(self):
        outcome = BackendOutcome.failure("remote", ErrorKind.REMOTE_SERVICE_ERROR, "timeout")
        assert outcome.describe() == "remote_service_error: timeout"
