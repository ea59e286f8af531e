"""
Central configuration — reads from .env file.

Every value is a module attribute so code (and tests) can read or override
config.X directly. The detector itself never reads these globals: callers
freeze them into a DetectorConfig with detector_config() and pass that
snapshot with each request.
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from product_classifier import DEFAULT_PRODUCT_KEYWORDS

load_dotenv()

# Value shipped in the config template; treated as "no key"
API_KEY_PLACEHOLDER = "YOUR_API_KEY_HERE"

MIN_ZOOM = 1.0
MAX_ZOOM = 4.0


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_keywords(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    words = tuple(w.strip().lower() for w in raw.split(",") if w.strip())
    return words or DEFAULT_PRODUCT_KEYWORDS


def credential_configured(api_key: "str | None") -> bool:
    return bool(api_key) and api_key.strip() != API_KEY_PLACEHOLDER


# ── Cloud Vision ──────────────────────────────────────────────────────────────
# https://console.cloud.google.com/apis/credentials
GOOGLE_CLOUD_VISION_API_KEY: "str | None" = os.getenv("GOOGLE_CLOUD_VISION_API_KEY")

# Cloud gives better labels and real shopping pages but spends API quota.
# Local detection is free and works offline.
PREFER_REMOTE: bool = _env_flag("PREFER_REMOTE", False)

# Also ask Cloud Vision for text and logo annotations (costs more per image)
INCLUDE_TEXT_AND_LOGO: bool = _env_flag("INCLUDE_TEXT_AND_LOGO", False)

REMOTE_TIMEOUT_SECONDS: float = _env_float("REMOTE_TIMEOUT_SECONDS", 15.0)

# Upper bound for one backend attempt, enforced by the detector
BACKEND_TIMEOUT_SECONDS: float = _env_float("BACKEND_TIMEOUT_SECONDS", 20.0)

# ── On-device detection ───────────────────────────────────────────────────────
LOCAL_CONFIDENCE_FLOOR: float = _env_float("LOCAL_CONFIDENCE_FLOOR", 0.15)
LOCAL_OBJECT_LOCALIZATION: bool = _env_flag("LOCAL_OBJECT_LOCALIZATION", False)

# ── Zoom ──────────────────────────────────────────────────────────────────────
# Higher zoom helps identify small objects and text
AUTO_ZOOM_ENABLED: bool = _env_flag("AUTO_ZOOM_ENABLED", True)
ZOOM_LEVEL: float = min(max(_env_float("ZOOM_LEVEL", 2.0), MIN_ZOOM), MAX_ZOOM)

# ── Product heuristic ─────────────────────────────────────────────────────────
# Comma-separated, e.g. "mug,bottle,sneaker". Empty → built-in vocabulary.
PRODUCT_KEYWORDS: tuple[str, ...] = _env_keywords("PRODUCT_KEYWORDS")

# ── History ───────────────────────────────────────────────────────────────────
SAVE_HISTORY: bool = _env_flag("SAVE_HISTORY", True)


@dataclass(frozen=True)
class DetectorConfig:
    """Read-only snapshot handed to HybridDetector.detect() with each request."""
    prefer_remote: bool = False
    remote_credential_configured: bool = False
    zoom_factor: float = 2.0
    auto_zoom_enabled: bool = True
    product_keywords: frozenset = field(default_factory=lambda: frozenset(DEFAULT_PRODUCT_KEYWORDS))
    backend_timeout: float = 20.0

    def __post_init__(self) -> None:
        if self.zoom_factor < 1.0:
            raise ValueError(f"zoom_factor must be >= 1.0, got {self.zoom_factor}")
        if self.backend_timeout <= 0:
            raise ValueError(f"backend_timeout must be positive, got {self.backend_timeout}")


def detector_config(**overrides) -> DetectorConfig:
    """Freeze the current settings; keyword overrides win (used by the CLI flags)."""
    values = dict(
        prefer_remote=PREFER_REMOTE,
        remote_credential_configured=credential_configured(GOOGLE_CLOUD_VISION_API_KEY),
        zoom_factor=ZOOM_LEVEL,
        auto_zoom_enabled=AUTO_ZOOM_ENABLED,
        product_keywords=frozenset(PRODUCT_KEYWORDS),
        backend_timeout=BACKEND_TIMEOUT_SECONDS,
    )
    values.update({k: v for k, v in overrides.items() if v is not None})
    return DetectorConfig(**values)
