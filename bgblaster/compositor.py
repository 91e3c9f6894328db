"""
Compositing of a predicted alpha matte with its source image.

Given a decoded bitmap and a same-sized uint8 pixel buffer, builds two PNG
artifacts: a grayscale visualization of the matte and the source image with
the matte substituted as its alpha channel.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from typing import Tuple

import numpy as np
from PIL import Image

from .errors import EncodingError

logger = logging.getLogger(__name__)

PNG_CONTENT_TYPE = "image/png"
MASK_SUFFIX = "-mask.png"
COMPOSITE_SUFFIX = "-bg-blasted.png"


@dataclass(frozen=True)
class ImageFile:
    name: str
    data: bytes
    content_type: str = PNG_CONTENT_TYPE


@dataclass(frozen=True)
class RunResult:
    mask: ImageFile
    composite: ImageFile


def derive_filenames(source_name: str) -> Tuple[str, str]:
    """
    Return `(mask_name, composite_name)` for an uploaded file name.

    The base name is everything before the first '.', so "my.cat.png"
    yields "my-mask.png". Kept as-is for parity with existing downloads.
    """
    base = source_name.split(".", 1)[0]
    return f"{base}{MASK_SUFFIX}", f"{base}{COMPOSITE_SUFFIX}"


def _as_plane(buffer: np.ndarray, width: int, height: int) -> np.ndarray:
    """Coerce a flat or (H, W) buffer into an (H, W) uint8 plane."""
    arr = np.asarray(buffer)
    if arr.size != width * height:
        raise EncodingError(
            f"pixel buffer has {arr.size} entries, expected {width * height} for {width}x{height}"
        )
    return np.clip(arr, 0, 255).astype(np.uint8).reshape(height, width)


def build_mask_image(buffer: np.ndarray, size: Tuple[int, int]) -> Image.Image:
    """Opaque grayscale RGBA image with R=G=B=buffer[i] and A=255."""
    width, height = size
    plane = _as_plane(buffer, width, height)
    rgba = np.empty((height, width, 4), dtype=np.uint8)
    rgba[..., :3] = plane[..., None]
    rgba[..., 3] = 255
    return Image.fromarray(rgba)


def build_composite_image(source: Image.Image, buffer: np.ndarray) -> Image.Image:
    """Copy of `source` with only its alpha channel replaced by the buffer."""
    width, height = source.size
    plane = _as_plane(buffer, width, height)
    try:
        rgba = np.array(source.convert("RGBA"), dtype=np.uint8)
    except (OSError, ValueError) as exc:
        raise EncodingError(f"could not draw source image: {exc}") from exc
    rgba[..., 3] = plane
    return Image.fromarray(rgba)


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    try:
        image.save(buf, format="PNG")
    except (OSError, ValueError) as exc:
        raise EncodingError(f"failed to encode PNG: {exc}") from exc
    data = buf.getvalue()
    if not data:
        raise EncodingError("PNG encoder produced no data")
    return data


def composite(source_name: str, bitmap: Image.Image, buffer: np.ndarray) -> RunResult:
    """
    Build the mask and cut-out PNGs for one image.

    Raises:
        EncodingError: when the buffer does not match the bitmap or PNG
            encoding fails. Nothing is returned in that case.
    """
    mask_name, composite_name = derive_filenames(source_name)
    mask_png = encode_png(build_mask_image(buffer, bitmap.size))
    composite_png = encode_png(build_composite_image(bitmap, buffer))
    logger.debug(
        "composite: %s -> %s (%d bytes), %s (%d bytes)",
        source_name,
        mask_name,
        len(mask_png),
        composite_name,
        len(composite_png),
    )
    return RunResult(
        mask=ImageFile(name=mask_name, data=mask_png),
        composite=ImageFile(name=composite_name, data=composite_png),
    )
