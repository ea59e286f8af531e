"""
frame.py — the single camera frame handed over at tap time.

The camera collaborator delivers raw pixels plus their dimensions. Frame keeps
those bytes untouched until a request needs a Pillow image.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

from PIL import Image, UnidentifiedImageError

from errors import InvalidImage
from region import Size


@dataclass(frozen=True)
class Frame:
    data: bytes
    width: int
    height: int
    mode: str = "RGB"       # any Pillow raw mode: RGB, RGBA, L …

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)

    @classmethod
    def from_image(cls, image: Image.Image) -> "Frame":
        if image.mode not in ("RGB", "RGBA", "L"):
            image = image.convert("RGB")
        return cls(data=image.tobytes(), width=image.width, height=image.height, mode=image.mode)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Frame":
        """Decode an encoded image file (JPEG, PNG …). Raises InvalidImage."""
        try:
            with Image.open(path) as img:
                img.load()
                return cls.from_image(img)
        except (OSError, UnidentifiedImageError) as exc:
            raise InvalidImage(f"Cannot read image {path}: {exc}") from exc

    def to_image(self) -> Image.Image:
        """Build a Pillow image from the raw buffer. Raises InvalidImage."""
        if self.width <= 0 or self.height <= 0:
            raise InvalidImage(f"Frame has no pixels ({self.width}x{self.height})")
        try:
            return Image.frombytes(self.mode, (self.width, self.height), self.data)
        except ValueError as exc:
            raise InvalidImage(f"Frame buffer does not match {self.mode} {self.width}x{self.height}: {exc}") from exc
