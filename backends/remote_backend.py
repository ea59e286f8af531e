"""
Google Cloud Vision backend (images:annotate REST endpoint).

Get a key at https://console.cloud.google.com/apis/credentials and set
GOOGLE_CLOUD_VISION_API_KEY. One request carries the JPEG-encoded region and
asks for labels, web detection and object localization (plus text and logo
detection when INCLUDE_TEXT_AND_LOGO=true).

What comes back:
  • localizedObjectAnnotations → candidates with a bounding box; the label
    annotations ride along as their alternates
  • labelAnnotations           → whole-image candidates
  • webDetection.pagesWithMatchingImages → web matches, which the merger turns
    into real shopping links instead of a synthetic search link

Generic labels ("object", "product", "thing" …) and labels scoring ≤ 0.6 are
dropped, unless that would leave nothing.
"""
from __future__ import annotations

import asyncio
import base64
import io
import logging
import time
from typing import Any, Optional

import aiohttp
from PIL import Image

from backends.base import (
    BackendOutcome, BoundingBox, CancelToken, DetectionBackend, RawCandidate,
    WebMatch, clamp_confidence, run_cancellable,
)
from errors import DetectionCancelled, ErrorKind, RemoteServiceError
from region import ImageRegion, crop

logger = logging.getLogger(__name__)

# ── API constants ──────────────────────────────────────────────────────────────
VISION_API_URL = "https://vision.googleapis.com/v1/images:annotate"
JPEG_QUALITY   = 90

BASE_FEATURES = [
    {"type": "LABEL_DETECTION",     "maxResults": 15},
    {"type": "WEB_DETECTION",       "maxResults": 15},
    {"type": "OBJECT_LOCALIZATION", "maxResults": 10},
]
TEXT_AND_LOGO_FEATURES = [
    {"type": "TEXT_DETECTION", "maxResults": 5},
    {"type": "LOGO_DETECTION", "maxResults": 5},
]

GENERIC_TERMS     = frozenset({"object", "material", "product", "thing", "item", "stuff"})
LABEL_SCORE_FLOOR = 0.6
MAX_LABELS        = 8
MAX_WEB_MATCHES   = 8


class RemoteBackend(DetectionBackend):

    requires_network = True

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 15.0,
        include_text_and_logo: bool = False,
    ) -> None:
        self.name = "remote/cloud-vision"
        self._api_key = api_key
        self._timeout = timeout
        self._features = BASE_FEATURES + (TEXT_AND_LOGO_FEATURES if include_text_and_logo else [])

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def detect(
        self,
        region: ImageRegion,
        image: Image.Image,
        cancel: Optional[CancelToken] = None,
    ) -> BackendOutcome:
        if cancel is not None and cancel.cancelled:
            return BackendOutcome.failure(self.name, ErrorKind.CANCELLED, "cancelled before start")
        if not self._api_key:
            return BackendOutcome.failure(self.name, ErrorKind.REMOTE_SERVICE_ERROR, "no API key configured")

        try:
            payload = build_request(crop(image, region), self._features)
        except (OSError, ValueError) as exc:
            logger.error("[%s] Could not encode region: %s", self.name, exc)
            return BackendOutcome.failure(self.name, ErrorKind.INVALID_IMAGE, str(exc))

        t0 = time.monotonic()
        try:
            data = await run_cancellable(self._post(payload), cancel)
            outcome = parse_response(data, self.name)
        except DetectionCancelled as exc:
            logger.info("[%s] Cancelled", self.name)
            return BackendOutcome.failure(self.name, ErrorKind.CANCELLED, str(exc))
        except asyncio.TimeoutError:
            logger.error("[%s] Timed out after %.1fs", self.name, self._timeout)
            return BackendOutcome.failure(self.name, ErrorKind.REMOTE_SERVICE_ERROR, "timeout")
        except (aiohttp.ClientError, RemoteServiceError, AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.error("[%s] Failed: %s", self.name, exc)
            return BackendOutcome.failure(self.name, ErrorKind.REMOTE_SERVICE_ERROR, str(exc))

        latency_ms = int((time.monotonic() - t0) * 1000)
        logger.info("[%s] OK — %s latency=%dms", self.name, outcome.describe(), latency_ms)
        return outcome

    # ── HTTP helper ───────────────────────────────────────────────────────────

    async def _post(self, payload: dict) -> Any:
        """Single annotate call. Raises RemoteServiceError on a non-200 answer."""
        async with aiohttp.ClientSession() as session:
            async with session.post(
                VISION_API_URL,
                params={"key": self._api_key},
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RemoteServiceError(f"Cloud Vision error {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)


# ── Request / response ────────────────────────────────────────────────────────

def build_request(image: Image.Image, features: list[dict]) -> dict:
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=JPEG_QUALITY)
    content = base64.b64encode(buf.getvalue()).decode("ascii")
    return {
        "requests": [
            {
                "image": {"content": content},
                "features": features,
            }
        ]
    }


def _bounding_box(annotation: dict) -> Optional[BoundingBox]:
    # Cloud Vision omits coordinates equal to 0
    vertices = (annotation.get("boundingPoly") or {}).get("normalizedVertices") or []
    if not vertices:
        return None
    xs = [min(max(float(v.get("x", 0.0)), 0.0), 1.0) for v in vertices]
    ys = [min(max(float(v.get("y", 0.0)), 0.0), 1.0) for v in vertices]
    width, height = max(xs) - min(xs), max(ys) - min(ys)
    if width <= 0 or height <= 0:
        return None
    return BoundingBox(min(xs), min(ys), width, height)


def _select_labels(annotations: list) -> list[tuple[str, float]]:
    labels = [(str(a["description"]), float(a["score"])) for a in annotations]
    specific = [
        (desc, score) for desc, score in labels
        if desc.lower() not in GENERIC_TERMS and score > LABEL_SCORE_FLOOR
    ]
    return (specific or labels)[:MAX_LABELS]


def _web_matches(first: dict) -> list[WebMatch]:
    web = first.get("webDetection") or {}
    pages = web.get("pagesWithMatchingImages") or []
    if not isinstance(pages, list):
        raise ValueError("pagesWithMatchingImages is not a list")
    matches: list[WebMatch] = []
    for page in pages:
        title = (page.get("pageTitle") or "").strip()
        url = page.get("url") or ""
        if not title or not url:
            continue
        score = page.get("score")
        matches.append(WebMatch(url=url, page_title=title, score=float(score) if score is not None else None))
        if len(matches) >= MAX_WEB_MATCHES:
            break
    return matches


def parse_response(data: Any, backend_name: str = "remote/cloud-vision") -> BackendOutcome:
    """
    Convert an annotate response into an outcome.
    Raises ValueError / KeyError / TypeError for any unexpected shape.
    """
    if not isinstance(data, dict):
        raise ValueError("Response is not a JSON object")
    responses = data["responses"]
    if not isinstance(responses, list) or not responses:
        raise ValueError("Response has no 'responses' entries")
    first = responses[0]
    if not isinstance(first, dict):
        raise ValueError("responses[0] is not an object")
    if "error" in first:
        raise ValueError(f"Cloud Vision error: {(first['error'] or {}).get('message', 'unknown')}")

    annotations = first.get("labelAnnotations") or []
    objects = first.get("localizedObjectAnnotations") or []
    if not isinstance(annotations, list) or not isinstance(objects, list):
        raise ValueError("Annotation blocks must be lists")

    labels = _select_labels(annotations)
    label_names = tuple(desc for desc, _ in labels)

    candidates: list[RawCandidate] = []
    for obj in objects:
        box = _bounding_box(obj)
        if box is None:
            continue
        candidates.append(RawCandidate(
            label=str(obj["name"]),
            confidence=clamp_confidence(obj.get("score", 0.0)),
            bounding_box=box,
            alternate_labels=label_names,
        ))
    for desc, score in labels:
        candidates.append(RawCandidate(label=desc, confidence=clamp_confidence(score)))

    return BackendOutcome.success(backend_name, candidates, _web_matches(first))
