"""
On-device recognition backend.

Wraps a RecognitionEngine (an image classifier, optionally with an object
localizer) and runs it in a worker thread so the event loop stays free.
Always available, never touches the network.

Engine faults become Failure(LOCAL_RECOGNITION_ERROR). A failing localizer is
only logged: whole-image classification still answers on its own.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from backends.base import (
    BackendOutcome, BoundingBox, CancelToken, DetectionBackend, RawCandidate,
    clamp_confidence, run_cancellable,
)
from errors import DetectionCancelled, ErrorKind
from region import ImageRegion, crop

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.15
MAX_CLASSIFICATIONS = 10
MAX_ALTERNATES = 3


@dataclass(frozen=True)
class Observation:
    """Raw engine output: identifier as the model names it."""
    identifier: str
    confidence: float
    bounding_box: Optional[BoundingBox] = None
    alternates: tuple[str, ...] = ()


class RecognitionEngine(ABC):
    """On-device model wrapper. Methods are blocking and run off the event loop."""

    name: str = "engine"

    @abstractmethod
    def classify(self, image: Image.Image) -> list[Observation]:
        """Whole-image classification, best first."""
        ...

    def localize(self, image: Image.Image) -> list[Observation]:
        """Objects with bounding boxes. Engines without a localizer return []."""
        return []


def _default_engine() -> RecognitionEngine:
    import config
    from backends.torchvision_engine import TorchvisionEngine
    return TorchvisionEngine(with_localization=config.LOCAL_OBJECT_LOCALIZATION)


class LocalBackend(DetectionBackend):

    requires_network = False

    def __init__(
        self,
        engine: Optional[RecognitionEngine] = None,
        confidence_floor: float = CONFIDENCE_FLOOR,
        max_results: int = MAX_CLASSIFICATIONS,
    ) -> None:
        self._engine = engine
        self.confidence_floor = confidence_floor
        self.max_results = max_results
        self.name = f"local/{engine.name}" if engine else "local"
        self._engine_lock = threading.Lock()

    def _get_engine(self) -> RecognitionEngine:
        # The default model is heavy; load it once, on the first request.
        # Called from worker threads.
        if self._engine is None:
            with self._engine_lock:
                if self._engine is None:
                    engine = _default_engine()
                    self.name = f"local/{engine.name}"
                    self._engine = engine
                    logger.info("Loaded on-device engine: %s", engine.name)
        return self._engine

    async def detect(
        self,
        region: ImageRegion,
        image: Image.Image,
        cancel: Optional[CancelToken] = None,
    ) -> BackendOutcome:
        if cancel is not None and cancel.cancelled:
            return BackendOutcome.failure(self.name, ErrorKind.CANCELLED, "cancelled before start")

        t0 = time.monotonic()
        try:
            cropped = crop(image, region)
            classifications, objects = await run_cancellable(self._recognize(cropped), cancel)
        except DetectionCancelled as exc:
            logger.info("[%s] Cancelled", self.name)
            return BackendOutcome.failure(self.name, ErrorKind.CANCELLED, str(exc))
        except Exception as exc:
            logger.error("[%s] Failed: %s", self.name, exc)
            return BackendOutcome.failure(self.name, ErrorKind.LOCAL_RECOGNITION_ERROR, str(exc))

        candidates = self._to_candidates(objects, with_boxes=True)
        candidates += self._to_candidates(classifications, with_boxes=False)[: self.max_results]
        latency_ms = int((time.monotonic() - t0) * 1000)
        logger.info(
            "[%s] OK — %d objects, %d classifications latency=%dms",
            self.name, len(objects), len(classifications), latency_ms,
        )
        return BackendOutcome.success(self.name, candidates)

    async def _recognize(self, image: Image.Image) -> tuple[list[Observation], list[Observation]]:
        engine = await asyncio.to_thread(self._get_engine)
        classifications, objects = await asyncio.gather(
            asyncio.to_thread(engine.classify, image),
            self._safe_localize(engine, image),
        )
        return list(classifications), objects

    async def _safe_localize(self, engine: RecognitionEngine, image: Image.Image) -> list[Observation]:
        try:
            return list(await asyncio.to_thread(engine.localize, image))
        except Exception as exc:
            logger.warning("[%s] Object localization failed, using classification only: %s", self.name, exc)
            return []

    def _to_candidates(self, observations: list[Observation], with_boxes: bool) -> list[RawCandidate]:
        kept = [
            o for o in observations
            if o.confidence >= self.confidence_floor and (o.bounding_box is not None) == with_boxes
        ]
        kept.sort(key=lambda o: o.confidence, reverse=True)
        return [
            RawCandidate(
                label=o.identifier,
                confidence=clamp_confidence(o.confidence),
                bounding_box=o.bounding_box,
                alternate_labels=tuple(o.alternates[:MAX_ALTERNATES]),
            )
            for o in kept
        ]
