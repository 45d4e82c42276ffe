from __future__ import annotations

import io
from typing import IO

from PIL import Image, UnidentifiedImageError

from redditbg.core.errors import InvalidAspectRatio, MalformedContent
from redditbg.core.models import DisplayGeometry, ImageCandidate

STORAGE_FORMAT = "PNG"


def decode_image(reference: str, body: bytes) -> ImageCandidate:
    """Detect the format of a payload and decode it fully."""
    try:
        img = Image.open(io.BytesIO(body))
        fmt = img.format or ""
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise MalformedContent(reference, f"Not an image: {e}") from e

    return ImageCandidate(format=fmt, width=img.width, height=img.height, image=img)


def check_aspect_ratio(reference: str, candidate: ImageCandidate, display: DisplayGeometry, epsilon: float) -> None:
    """Reject images whose width:height differs from the display's by more than `epsilon`."""
    if candidate.height <= 0 or abs(candidate.aspect_ratio - display.aspect_ratio) > epsilon:
        raise InvalidAspectRatio(reference, candidate.width, candidate.height, display.width, display.height)


def fit_to_display(candidate: ImageCandidate, display: DisplayGeometry) -> Image.Image:
    """Resize a decoded image to exactly the display size."""
    img = candidate.image
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
    if img.size == display.as_tuple():
        return img
    return img.resize(display.as_tuple(), Image.Resampling.LANCZOS)


def image_writer(img: Image.Image, fmt: str = STORAGE_FORMAT):
    """Adapt a PIL image to the store's `write(identity, writer)` callable."""

    def write(fh: IO[bytes]) -> None:
        img.save(fh, format=fmt)

    return write
