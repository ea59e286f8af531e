"""
Shared types and base class for all detection backends.

A backend takes the tapped region of a frame and answers with a
BackendOutcome — never an exception. Internal faults are caught at the
backend boundary and reported as BackendOutcome.failure(kind, message).
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Iterable, Optional, TypeVar

from PIL import Image

from errors import DetectionCancelled, ErrorKind
from region import ImageRegion

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Candidate types ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BoundingBox:
    """Normalized rectangle, all values in [0, 1]."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for value in (self.x, self.y, self.width, self.height):
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Bounding box values must be in [0, 1]: {self}")
        if self.x + self.width > 1.0 + 1e-6 or self.y + self.height > 1.0 + 1e-6:
            raise ValueError(f"Bounding box exceeds the unit square: {self}")


@dataclass(frozen=True)
class RawCandidate:
    """One backend's opinion, label still in the backend's own vocabulary."""
    label: str
    confidence: float
    bounding_box: Optional[BoundingBox] = None
    alternate_labels: tuple[str, ...] = ()     # backend's secondary guesses, best first

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {self.confidence}")


@dataclass(frozen=True)
class WebMatch:
    """A web page showing the same image (remote backends only)."""
    url: str
    page_title: str
    score: Optional[float] = None


def clamp_confidence(value: float) -> float:
    return max(0.0, min(float(value), 1.0))


# ── Outcome ───────────────────────────────────────────────────────────────────

class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    EMPTY   = "empty"
    FAILURE = "failure"


@dataclass(frozen=True)
class BackendOutcome:
    status: OutcomeStatus
    backend: str = ""
    candidates: tuple[RawCandidate, ...] = ()
    web_matches: tuple[WebMatch, ...] = ()
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(
        cls,
        backend: str,
        candidates: Iterable[RawCandidate],
        web_matches: Iterable[WebMatch] = (),
    ) -> "BackendOutcome":
        """A success with nothing in it is reported as empty."""
        candidates = tuple(candidates)
        if not candidates:
            return cls.empty(backend)
        return cls(OutcomeStatus.SUCCESS, backend, candidates, tuple(web_matches))

    @classmethod
    def empty(cls, backend: str) -> "BackendOutcome":
        return cls(OutcomeStatus.EMPTY, backend)

    @classmethod
    def failure(cls, backend: str, error: ErrorKind, message: str = "") -> "BackendOutcome":
        return cls(OutcomeStatus.FAILURE, backend, error=error, message=message)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.error is ErrorKind.CANCELLED

    def describe(self) -> str:
        if self.status is OutcomeStatus.FAILURE:
            return f"{self.error.value}: {self.message}" if self.message else self.error.value
        if self.status is OutcomeStatus.EMPTY:
            return "empty"
        return f"{len(self.candidates)} candidates, {len(self.web_matches)} web matches"


# ── Cancellation ──────────────────────────────────────────────────────────────

class CancelToken:
    """Request-scoped cancellation signal. Must be created inside the event loop."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(work: Awaitable[T], cancel: Optional[CancelToken]) -> T:
    """
    Await `work` unless `cancel` fires first.
    On cancellation the work is abandoned and DetectionCancelled is raised.
    """
    if cancel is None:
        return await work
    if cancel.cancelled:
        if asyncio.iscoroutine(work):
            work.close()
        raise DetectionCancelled("Request cancelled before the backend call")

    work_task = asyncio.ensure_future(work)
    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({work_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # also reached when the caller times out or is itself cancelled
        if not cancel_task.done():
            cancel_task.cancel()
        if not work_task.done():
            work_task.cancel()

    if work_task.done():
        return work_task.result()
    raise DetectionCancelled("Request cancelled during the backend call")


# ── Abstract base ──────────────────────────────────────────────────────────────

class DetectionBackend(ABC):
    """Base class all detection backends must implement."""

    name: str                       # e.g. "local/torchvision"
    requires_network: bool = False

    @abstractmethod
    async def detect(
        self,
        region: ImageRegion,
        image: Image.Image,
        cancel: Optional[CancelToken] = None,
    ) -> BackendOutcome:
        """Recognise what is inside `region` of `image`. Never raises."""
        ...

    def is_available(self) -> bool:
        return True
