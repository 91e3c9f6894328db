"""
Model session for RMBG background removal.

A `ModelSession` owns one pretrained model and its image processor:
 - `initialize()` loads both once for the fixed model identifier,
 - `run(image)` decodes an upload, predicts the alpha matte and hands the
   resized matte to the compositor.

Loaders are injectable so callers and tests can substitute their own.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np
from PIL import Image
import torch
from transformers import AutoModelForImageSegmentation

from . import compositor, config
from .compositor import ImageFile, RunResult
from .errors import EncodingError, InferenceError, ModelInitError, NotInitializedError
from .preprocessing import DecodedImage, decode_image, load_processor, prepare_input

logger = logging.getLogger(__name__)

MODEL_ID = "briaai/RMBG-1.4"

ModelLoader = Callable[[str, torch.device, config.Settings], Any]
ProcessorLoader = Callable[[str, config.Settings], Any]


def select_device(settings: config.Settings) -> torch.device:
    """Explicit DEVICE wins; otherwise prefer CUDA -> Apple MPS -> CPU."""
    if settings.device:
        return torch.device(settings.device)
    if settings.prefer_accelerator:
        if torch.cuda.is_available():
            return torch.device("cuda")
        if torch.backends.mps.is_available():  # type: ignore[attr-defined]
            return torch.device("mps")
    return torch.device("cpu")


def load_pretrained_model(model_id: str, device: torch.device, settings: config.Settings) -> torch.nn.Module:
    model = AutoModelForImageSegmentation.from_pretrained(
        model_id,
        trust_remote_code=settings.trust_remote_code,
        cache_dir=str(settings.hf_cache_dir) if settings.hf_cache_dir else None,
    )
    model.to(device)
    model.eval()
    return model


def load_pretrained_processor(model_id: str, settings: config.Settings) -> Any:
    return load_processor(model_id, cache_dir=settings.hf_cache_dir)


def _extract_matte(outputs: Any) -> torch.Tensor:
    """Pull the single-channel (H, W) matte out of the model's nested outputs."""
    out = outputs
    if hasattr(out, "logits"):
        out = out.logits
    # RMBG returns ([side outputs...], [features...]); the first side output is the fused matte.
    while isinstance(out, (list, tuple)):
        if not out:
            raise ValueError("model returned an empty output")
        out = out[0]
    if not isinstance(out, torch.Tensor):
        raise ValueError(f"unexpected model output type {type(out).__name__}")
    matte = out[0] if out.dim() == 4 else out
    matte = matte.squeeze(0) if matte.dim() == 3 else matte
    if matte.dim() != 2:
        raise ValueError(f"expected a single-channel matte, got shape {tuple(out.shape)}")
    return matte


def matte_to_pixel_buffer(matte: torch.Tensor, size: tuple[int, int]) -> np.ndarray:
    """Scale a [0, 1] matte to uint8 and resize it to `size` (width, height)."""
    matte_u8 = matte.detach().float().mul(255).clamp(0, 255).to(torch.uint8).cpu().numpy()
    resized = Image.fromarray(matte_u8).resize(size, Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8)


class ModelSession:
    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        model_loader: Optional[ModelLoader] = None,
        processor_loader: Optional[ProcessorLoader] = None,
        model_id: str = MODEL_ID,
    ):
        self._settings = settings or config.get_settings()
        self._model_loader = model_loader or load_pretrained_model
        self._processor_loader = processor_loader or load_pretrained_processor
        self._model_id = model_id
        self._model: Any = None
        self._processor: Any = None
        self._device = select_device(self._settings)

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def loaded(self) -> bool:
        return self._model is not None and self._processor is not None

    def initialize(self) -> bool:
        """
        Load the model and processor. Returns True once both are ready.

        Raises:
            ModelInitError: when either fails to load. No retry is attempted.
        """
        if self.loaded:
            return True

        if not self._settings.allow_local_models and Path(self._model_id).exists():
            raise ModelInitError(
                f"Local models are disabled; refusing to load {self._model_id!r} from disk"
            )

        logger.info("Loading %s on device %s", self._model_id, self._device)
        try:
            model = self._model_loader(self._model_id, self._device, self._settings)
            processor = self._processor_loader(self._model_id, self._settings)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error initializing model %s: %s", self._model_id, exc)
            raise ModelInitError(str(exc) or "Failed to initialize background removal model") from exc

        self._model, self._processor = model, processor
        logger.info("%s loaded on device: %s", self._model_id, self._device)
        return True

    def _predict_buffer(self, decoded: DecodedImage) -> np.ndarray:
        pixel_values = prepare_input(self._processor, decoded, self._device)
        with torch.no_grad():
            outputs = self._model(pixel_values)
        matte = _extract_matte(outputs)
        return matte_to_pixel_buffer(matte, decoded.size)

    def run(self, image: ImageFile) -> RunResult:
        """
        Remove the background from one uploaded image.

        Returns the mask and composite together; any failure aborts the
        whole call.

        Raises:
            NotInitializedError: `initialize()` has not succeeded.
            InferenceError: decoding, preprocessing or inference failed.
            EncodingError: the compositor could not build an artifact.
        """
        if not self.loaded:
            raise NotInitializedError("Model not initialized. Call initialize() first.")

        try:
            decoded = decode_image(image.data)
            buffer = self._predict_buffer(decoded)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Inference failed for %s: %s", image.name, exc)
            raise InferenceError(f"Failed to process image {image.name!r}: {exc}") from exc

        logger.debug("run: %s size=%dx%d", image.name, decoded.size[0], decoded.size[1])
        try:
            return compositor.composite(image.name, decoded.bitmap, buffer)
        except EncodingError:
            logger.exception("Encoding failed for %s", image.name)
            raise
