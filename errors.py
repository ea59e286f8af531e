"""
errors.py — error taxonomy for the detection pipeline.

Backends never raise these across their boundary; they convert faults into
BackendOutcome.failure(kind). Only the HybridDetector raises to the caller:
  InvalidImage        — the frame could not be turned into an image
  DetectionFailed     — every attempted backend failed or came back empty
  DetectionCancelled  — the request was superseded

ResultMerger raises NoDetection when it is handed nothing usable.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_IMAGE           = "invalid_image"
    LOCAL_RECOGNITION_ERROR = "local_recognition_error"
    REMOTE_SERVICE_ERROR    = "remote_service_error"
    NO_DETECTION            = "no_detection"
    DETECTION_FAILED        = "detection_failed"
    CANCELLED               = "cancelled"


class DetectionError(Exception):
    """Base class for every error the pipeline reports."""
    kind: ErrorKind = ErrorKind.DETECTION_FAILED


class InvalidImage(DetectionError):
    kind = ErrorKind.INVALID_IMAGE


class LocalRecognitionError(DetectionError):
    kind = ErrorKind.LOCAL_RECOGNITION_ERROR


class RemoteServiceError(DetectionError):
    kind = ErrorKind.REMOTE_SERVICE_ERROR


class NoDetection(DetectionError):
    kind = ErrorKind.NO_DETECTION


class DetectionCancelled(DetectionError):
    kind = ErrorKind.CANCELLED


class DetectionFailed(DetectionError):
    """
    Terminal failure surfaced after the fallback policy is exhausted.
    `attempts` lists (backend_name, outcome) in the order they were tried.
    """
    kind = ErrorKind.DETECTION_FAILED

    def __init__(self, message: str, attempts: Optional[list] = None) -> None:
        super().__init__(message)
        self.attempts = list(attempts or [])


def user_message(exc: BaseException) -> Optional[str]:
    """
    Text shown to the user for a failed request.
    Returns None for cancellations: a newer tap is already in flight.
    """
    if isinstance(exc, DetectionCancelled):
        return None
    if isinstance(exc, InvalidImage):
        return "Image processing failed"
    if isinstance(exc, (DetectionFailed, NoDetection)):
        return "Could not identify object"
    return "Detection failed. Try again."
