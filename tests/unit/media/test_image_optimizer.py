from __future__ import annotations

import io

import pytest
from PIL import Image

from printcraft.exceptions import ImageProcessingError
from printcraft.media import ImageOptimizer
from tests.mocks.providers import TRANSPARENT_PNG_BYTES


def _png(size: tuple[int, int], mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size).save(buffer, format="PNG")
    return buffer.getvalue()


def _decode(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def test_defaults_reencode_to_webp() -> None:
    optimized = ImageOptimizer().optimize(_png((1024, 768)))

    assert optimized.content_type == "image/webp"
    assert (optimized.width, optimized.height) == (1024, 768)
    decoded = _decode(optimized.data)
    assert decoded.format == "WEBP"
    assert decoded.size == (1024, 768)


def test_resize_fits_inside_box_and_keeps_aspect_ratio() -> None:
    optimized = ImageOptimizer(image_format="jpeg", max_width=512, max_height=512).optimize(_png((1024, 768)))

    assert optimized.content_type == "image/jpeg"
    assert (optimized.width, optimized.height) == (512, 384)
    assert _decode(optimized.data).size == (512, 384)


def test_small_images_are_not_enlarged() -> None:
    optimized = ImageOptimizer(max_width=2048).optimize(_png((640, 480)))

    assert (optimized.width, optimized.height) == (640, 480)


@pytest.mark.parametrize("image_format", ["webp", "jpeg", "png"])
def test_transparent_input_is_converted_for_target_format(image_format: str) -> None:
    optimized = ImageOptimizer(image_format=image_format).optimize(TRANSPARENT_PNG_BYTES)

    assert _decode(optimized.data).size == (1, 1)


def test_lower_quality_gives_smaller_jpeg() -> None:
    buffer = io.BytesIO()
    Image.effect_noise((256, 256), 64).convert("RGB").save(buffer, format="PNG")
    source = buffer.getvalue()

    low = ImageOptimizer(image_format="jpeg", quality=20).optimize(source)
    high = ImageOptimizer(image_format="jpeg", quality=95).optimize(source)

    assert len(low.data) < len(high.data)


def test_undecodable_bytes_raise_processing_error() -> None:
    with pytest.raises(ImageProcessingError):
        ImageOptimizer().optimize(b"<html>upstream error page</html>")


@pytest.mark.parametrize("options", [{"image_format": "gif"}, {"quality": 0}])
def test_invalid_settings_are_rejected(options: dict) -> None:
    with pytest.raises(ValueError):
        ImageOptimizer(**options)
