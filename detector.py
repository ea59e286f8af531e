"""
detector.py — HybridDetector, the single entry point the AR/UI layer calls.

Per request:
  IDLE → SELECTING_BACKEND → AWAITING_BACKEND ─ success → MERGING → DONE
                                    │
                                    └ failure / empty / timeout
                                        → FALLING_BACK → AWAITING_BACKEND (local, once)
                                                           └ failure / empty → FAILED

The remote backend is only tried when the configuration prefers it AND a
credential is configured AND one is wired in. Otherwise the request goes
straight to the local backend and makes no network call. Attempts run one
after the other; the fallback is a single retry, never a loop.

The detector keeps no per-request state on the instance, so concurrent
requests (rapid re-taps) are independent. Dropping stale results is the
caller's job.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional, Union

from PIL import Image

from backends.base import BackendOutcome, CancelToken, DetectionBackend
from config import DetectorConfig
from errors import DetectionCancelled, DetectionFailed, ErrorKind, NoDetection
from frame import Frame
from merger import DetectionResult, merge
from region import ImageRegion, Point, Size, select_region

logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    IDLE              = "idle"
    SELECTING_BACKEND = "selecting_backend"
    AWAITING_BACKEND  = "awaiting_backend"
    FALLING_BACK      = "falling_back"
    MERGING           = "merging"
    DONE              = "done"
    FAILED            = "failed"


class HybridDetector:

    def __init__(self, local: DetectionBackend, remote: Optional[DetectionBackend] = None) -> None:
        self.local = local
        self.remote = remote

    # ── Backend selection ─────────────────────────────────────────────────────

    def plan(self, config: DetectorConfig) -> list[DetectionBackend]:
        """Backends to try, in order."""
        if config.prefer_remote and config.remote_credential_configured and self.remote is not None:
            return [self.remote, self.local]
        if config.prefer_remote:
            logger.info("Remote detection preferred but not configured — using %s", self.local.name)
        return [self.local]

    # ── Entry point ───────────────────────────────────────────────────────────

    async def detect(
        self,
        frame: Union[Frame, Image.Image],
        tap: Point,
        view_size: Size,
        config: DetectorConfig,
        cancel: Optional[CancelToken] = None,
    ) -> DetectionResult:
        """
        Identify the object under `tap`.

        Returns exactly one DetectionResult, or raises:
          InvalidImage        — the frame is unusable (before any backend call)
          DetectionCancelled  — `cancel` fired; nothing is merged
          DetectionFailed     — every attempted backend failed or found nothing
        """
        state = DetectorState.IDLE
        image = frame.to_image() if isinstance(frame, Frame) else frame

        zoom = config.zoom_factor if config.auto_zoom_enabled else 1.0
        region = select_region(tap, view_size, Size(*image.size), zoom)

        state = self._transition(state, DetectorState.SELECTING_BACKEND)
        plan = self.plan(config)

        attempts: list[tuple[str, BackendOutcome]] = []
        for attempt, backend in enumerate(plan):
            if attempt > 0:
                state = self._transition(state, DetectorState.FALLING_BACK)
                logger.warning(
                    "[%s] %s — falling back to %s",
                    attempts[-1][0], attempts[-1][1].describe(), backend.name,
                )
            state = self._transition(state, DetectorState.AWAITING_BACKEND)

            outcome = await self._safe_detect(backend, region, image, config, cancel)
            attempts.append((backend.name, outcome))

            if outcome.cancelled or (cancel is not None and cancel.cancelled):
                self._transition(state, DetectorState.FAILED)
                raise DetectionCancelled("Detection request was cancelled")
            if not outcome.ok:
                continue

            state = self._transition(state, DetectorState.MERGING)
            try:
                result = merge([outcome], config.product_keywords)
            except NoDetection as exc:
                logger.warning("[%s] Nothing usable after merge: %s", backend.name, exc)
                continue
            self._transition(state, DetectorState.DONE)
            logger.info(
                "Detected %s (%d%%) via %s — product=%s links=%d",
                result.main_label, int(result.confidence * 100), result.backend,
                result.is_product, len(result.shopping_links),
            )
            return result

        self._transition(state, DetectorState.FAILED)
        summary = "; ".join(f"{name}: {outcome.describe()}" for name, outcome in attempts)
        raise DetectionFailed(f"All detection backends failed ({summary})", attempts)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _safe_detect(
        self,
        backend: DetectionBackend,
        region: ImageRegion,
        image: Image.Image,
        config: DetectorConfig,
        cancel: Optional[CancelToken],
    ) -> BackendOutcome:
        error_kind = (
            ErrorKind.REMOTE_SERVICE_ERROR if backend.requires_network
            else ErrorKind.LOCAL_RECOGNITION_ERROR
        )
        try:
            return await asyncio.wait_for(
                backend.detect(region, image, cancel), timeout=config.backend_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("[%s] No answer within %.1fs", backend.name, config.backend_timeout)
            return BackendOutcome.failure(backend.name, error_kind, "timeout")
        except Exception as exc:
            logger.error("[%s] Failed: %s", backend.name, exc)
            return BackendOutcome.failure(backend.name, error_kind, str(exc))

    @staticmethod
    def _transition(current: DetectorState, new: DetectorState) -> DetectorState:
        logger.debug("Detector state: %s → %s", current.value, new.value)
        return new
