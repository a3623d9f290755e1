"""Image importer for Mensura.

Decodes raster images (PNG, JPEG, TIFF, BMP, GIF, WebP) into numpy arrays
for display and for sampling intensities at measurement vertices.
Grayscale images stay single-channel; everything else is converted to RGB.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
from loguru import logger
from PIL import Image, UnidentifiedImageError

from mensura.core.errors import ImageUnavailableError

SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".tiff", ".tif", ".gif", ".webp"}

# PIL modes kept as a single channel
_GRAY_MODES = {"1", "L", "I", "I;16", "F"}


def can_import(path: Path) -> bool:
    """Check if the file is a supported image format."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


@dataclass
class LoadedImage:
    """A decoded image. ``pixels`` is (height, width) or (height, width, 3)."""

    path: Path
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def is_rgb(self) -> bool:
        return self.pixels.ndim == 3


def load_image(path: Path) -> LoadedImage:
    """Decode an image file. Raises ImageUnavailableError when it cannot be read."""
    path = Path(path)
    try:
        with Image.open(path) as img:
            if img.mode not in _GRAY_MODES:
                img = img.convert("RGB")
            elif img.mode == "1":
                img = img.convert("L")
            pixels = np.asarray(img)
    except (OSError, UnidentifiedImageError, ValueError) as e:
        raise ImageUnavailableError(f"Cannot read image {path}: {e}") from e
    logger.debug(f"Decoded {path.name}: {pixels.shape[1]}x{pixels.shape[0]}")
    return LoadedImage(path=path, pixels=pixels)


def read_image_size(path: Path) -> tuple[int, int]:
    """Width and height from the file header, without decoding the pixels."""
    path = Path(path)
    try:
        with Image.open(path) as img:
            return img.width, img.height
    except (OSError, UnidentifiedImageError, ValueError) as e:
        raise ImageUnavailableError(f"Cannot read image {path}: {e}") from e


def sample_intensity(pixels: np.ndarray, points: Sequence[tuple[float, float]]) -> list[tuple[float, ...]]:
    """Bilinear samples of every channel at each point.

    Points are in image coordinates where pixel ``(c, r)`` covers
    ``[c, c + 1) x [r, r + 1)``; samples outside the image are clamped to
    the border.
    """
    data = np.asarray(pixels, dtype=np.float64)
    if data.ndim == 2:
        data = data[:, :, None]
    height, width = data.shape[:2]

    samples = []
    for x, y in points:
        cx = min(max(x - 0.5, 0.0), width - 1.0)
        cy = min(max(y - 0.5, 0.0), height - 1.0)
        c0, r0 = int(np.floor(cx)), int(np.floor(cy))
        c1, r1 = min(c0 + 1, width - 1), min(r0 + 1, height - 1)
        fx, fy = cx - c0, cy - r0
        top = data[r0, c0] * (1 - fx) + data[r0, c1] * fx
        bottom = data[r1, c0] * (1 - fx) + data[r1, c1] * fx
        value = top * (1 - fy) + bottom * fy
        samples.append(tuple(float(v) for v in value))
    return samples


class ImageLoader:
    """Default image collaborator of a session. Keeps the last decode."""

    def __init__(self):
        self._last: LoadedImage | None = None

    def probe(self, path: Path) -> tuple[int, int]:
        if not Path(path).is_file():
            raise ImageUnavailableError(f"Image not found: {path}")
        return read_image_size(path)

    def load(self, path: Path) -> LoadedImage:
        path = Path(path)
        if self._last is not None and self._last.path == path:
            return self._last
        self._last = load_image(path)
        return self._last
