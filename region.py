"""
region.py — maps a screen tap to the pixel region of the camera frame that
gets sent to recognition.

The view and the camera image rarely share an aspect ratio, so each axis is
scaled on its own. The crop is image_size / zoom per axis, centred on the
scaled tap and slid back inside the image when the tap is near an edge.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from PIL import Image


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Size:
    width: float
    height: float

    @property
    def is_positive(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass(frozen=True)
class ImageRegion:
    """Axis-aligned rectangle in source-image pixel coordinates."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Region must have a positive size, got {self.width}x{self.height}")
        if self.x < 0 or self.y < 0:
            raise ValueError(f"Region origin must be non-negative, got ({self.x}, {self.y})")

    @classmethod
    def full(cls, image_size: Size) -> "ImageRegion":
        return cls(0.0, 0.0, float(image_size.width), float(image_size.height))

    def fits_within(self, image_size: Size) -> bool:
        return (
            self.x + self.width <= image_size.width + 1e-6
            and self.y + self.height <= image_size.height + 1e-6
        )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def select_region(
    tap: Point,
    view_size: Size,
    image_size: Size,
    zoom_factor: float,
) -> ImageRegion:
    """
    Return the crop of the source image centred on the tap.

    zoom_factor <= 1.0 yields the whole image. Taps outside the view are
    clamped, never rejected. Raises ValueError only for non-positive sizes.
    """
    if not view_size.is_positive:
        raise ValueError(f"View size must be positive, got {view_size}")
    if not image_size.is_positive:
        raise ValueError(f"Image size must be positive, got {image_size}")

    scale_x = image_size.width / view_size.width
    scale_y = image_size.height / view_size.height
    image_tap_x = tap.x * scale_x
    image_tap_y = tap.y * scale_y

    # zoom below 1 would ask for a crop larger than the image
    zoom = max(zoom_factor, 1.0)
    crop_width = image_size.width / zoom
    crop_height = image_size.height / zoom

    x = _clamp(image_tap_x - crop_width / 2, 0.0, image_size.width - crop_width)
    y = _clamp(image_tap_y - crop_height / 2, 0.0, image_size.height - crop_height)

    return ImageRegion(x=x, y=y, width=crop_width, height=crop_height)


def crop(image: Image.Image, region: ImageRegion) -> Image.Image:
    """Cut `region` out of `image`, rounding outward to whole pixels."""
    width, height = image.size
    left = min(int(region.x), width - 1)
    top = min(int(region.y), height - 1)
    right = max(left + 1, min(width, int(math.ceil(region.x + region.width))))
    bottom = max(top + 1, min(height, int(math.ceil(region.y + region.height))))
    if (left, top, right, bottom) == (0, 0, width, height):
        return image
    return image.crop((left, top, right, bottom))
