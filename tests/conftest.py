from __future__ import annotations

from io import BytesIO

import pytest
import torch
from PIL import Image

from bgblaster.config import Settings
from bgblaster.model_session import ModelSession


def make_png(size=(10, 10), color=(255, 255, 255), mode="RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def open_png(data: bytes) -> Image.Image:
    image = Image.open(BytesIO(data))
    image.load()
    return image


class FakeProcessor:
    def __init__(self):
        self.calls = []

    def __call__(self, images, return_tensors="pt"):
        self.calls.append(images.size)
        return {"pixel_values": torch.zeros(1, 3, 8, 8)}


class FakeModel:
    """Mimics RMBG's ([side outputs], [features]) return shape with a constant matte."""

    def __init__(self, value: float):
        self.value = value

    def __call__(self, pixel_values):
        return [torch.full((1, 1, 8, 8), self.value)], []


class ExplodingModel:
    def __call__(self, pixel_values):
        raise RuntimeError("forward pass blew up")


@pytest.fixture
def settings() -> Settings:
    return Settings(device="cpu")


@pytest.fixture
def make_session(settings):
    def _make(model=None, processor=None) -> ModelSession:
        model = model if model is not None else FakeModel(1.0)
        processor = processor if processor is not None else FakeProcessor()
        return ModelSession(
            settings=settings,
            model_loader=lambda model_id, device, cfg: model,
            processor_loader=lambda model_id, cfg: processor,
        )

    return _make


@pytest.fixture
def white_png() -> bytes:
    return make_png()
