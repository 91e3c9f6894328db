import numpy as np
from PIL import Image
import pytest

from bgblaster.compositor import (
    build_composite_image,
    build_mask_image,
    composite,
    derive_filenames,
    encode_png,
)
from bgblaster.errors import EncodingError

from .conftest import open_png


@pytest.fixture
def gradient_source() -> Image.Image:
    rng = np.random.default_rng(0)
    rgb = rng.integers(0, 256, size=(6, 9, 3), dtype=np.uint8)
    return Image.fromarray(rgb)


@pytest.fixture
def gradient_buffer() -> np.ndarray:
    return np.arange(6 * 9, dtype=np.uint8).reshape(6, 9) * 4


def test_mask_is_opaque_grayscale(gradient_buffer):
    mask = np.array(build_mask_image(gradient_buffer, (9, 6)))

    assert mask.shape == (6, 9, 4)
    for channel in range(3):
        np.testing.assert_array_equal(mask[..., channel], gradient_buffer)
    assert (mask[..., 3] == 255).all()


def test_mask_accepts_flat_buffer(gradient_buffer):
    mask = np.array(build_mask_image(gradient_buffer.ravel(), (9, 6)))
    np.testing.assert_array_equal(mask[..., 0], gradient_buffer)


def test_composite_keeps_rgb_and_replaces_alpha(gradient_source, gradient_buffer):
    out = np.array(build_composite_image(gradient_source, gradient_buffer))

    np.testing.assert_array_equal(out[..., :3], np.array(gradient_source))
    np.testing.assert_array_equal(out[..., 3], gradient_buffer)


def test_composite_overrides_existing_alpha():
    source = Image.new("RGBA", (3, 2), (10, 20, 30, 7))
    buffer = np.full((2, 3), 200, dtype=np.uint8)

    out = np.array(build_composite_image(source, buffer))

    assert (out[..., :3] == [10, 20, 30]).all()
    assert (out[..., 3] == 200).all()


def test_buffer_size_mismatch_raises(gradient_source):
    with pytest.raises(EncodingError):
        build_mask_image(np.zeros(10, dtype=np.uint8), (9, 6))
    with pytest.raises(EncodingError):
        build_composite_image(gradient_source, np.zeros((9, 6, 2), dtype=np.uint8))


def test_encode_png_failure_is_encoding_error():
    # PNG cannot store CMYK.
    with pytest.raises(EncodingError):
        encode_png(Image.new("CMYK", (2, 2)))


def test_composite_is_deterministic(gradient_source, gradient_buffer):
    first = composite("photo.jpg", gradient_source, gradient_buffer)
    second = composite("photo.jpg", gradient_source, gradient_buffer)

    assert first.mask.data == second.mask.data
    assert first.composite.data == second.composite.data


def test_composite_round_trips_through_png(gradient_source, gradient_buffer):
    result = composite("photo.jpg", gradient_source, gradient_buffer)

    mask = open_png(result.mask.data)
    cutout = open_png(result.composite.data)
    assert mask.mode == "RGBA" and cutout.mode == "RGBA"
    assert mask.size == cutout.size == (9, 6)
    np.testing.assert_array_equal(np.array(cutout)[..., 3], gradient_buffer)
    assert result.mask.content_type == "image/png"


@pytest.mark.parametrize(
    "name, mask_name, composite_name",
    [
        ("cat.png", "cat-mask.png", "cat-bg-blasted.png"),
        ("my.cat.png", "my-mask.png", "my-bg-blasted.png"),
        ("noext", "noext-mask.png", "noext-bg-blasted.png"),
    ],
)
def test_derive_filenames(name, mask_name, composite_name):
    assert derive_filenames(name) == (mask_name, composite_name)


def test_composite_names_artifacts(gradient_source, gradient_buffer):
    result = composite("my.cat.png", gradient_source, gradient_buffer)
    assert result.mask.name == "my-mask.png"
    assert result.composite.name == "my-bg-blasted.png"
