"""
Image decoding and input preprocessing for RMBG.

The processor resizes to a fixed 1024x1024 square, rescales to [0, 1] and
centers with mean 0.5 / std 1, which puts inputs in [-0.5, 0.5].
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image, ImageOps
import torch
from transformers import ViTImageProcessor

PROCESSOR_CONFIG: Dict[str, Any] = {
    "do_resize": True,
    "size": {"height": 1024, "width": 1024},
    "resample": 2,  # bilinear
    "do_rescale": True,
    "rescale_factor": 1 / 255,
    "do_normalize": True,
    "image_mean": [0.5, 0.5, 0.5],
    "image_std": [1, 1, 1],
}


@dataclass
class DecodedImage:
    bitmap: Image.Image  # RGBA, source resolution
    size: Tuple[int, int]  # (width, height)


def _to_8bit(image: Image.Image) -> Image.Image:
    """Scale 16/32-bit integer grayscale down to "L"; convert() would clip at 255."""
    if image.mode == "I" or image.mode.startswith("I;16"):
        arr = np.asarray(image, dtype=np.int64)
        return Image.fromarray(np.clip(arr // 256, 0, 255).astype(np.uint8))
    return image


def decode_image(image_bytes: bytes) -> DecodedImage:
    """Decode uploaded bytes into an upright RGBA bitmap of known size."""
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
        image = ImageOps.exif_transpose(image)
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc
    bitmap = _to_8bit(image).convert("RGBA")
    return DecodedImage(bitmap=bitmap, size=bitmap.size)


def load_processor(model_id: str, cache_dir: Optional[Path] = None) -> ViTImageProcessor:
    """Load the hub processor for `model_id`, pinned to the fixed input parameters."""
    return ViTImageProcessor.from_pretrained(
        model_id,
        cache_dir=str(cache_dir) if cache_dir else None,
        **PROCESSOR_CONFIG,
    )


def prepare_input(processor: Any, decoded: DecodedImage, device: torch.device) -> torch.Tensor:
    """Run the processor on the RGB view of the bitmap and return NCHW pixel values."""
    rgb = decoded.bitmap.convert("RGB")
    inputs = processor(images=rgb, return_tensors="pt")
    return inputs["pixel_values"].to(device)
