"""Re-encoding of generated images before they reach the artifact store."""

from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image

from ..exceptions import ImageProcessingError

_PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG"}
_CONTENT_TYPES = {"webp": "image/webp", "jpeg": "image/jpeg", "png": "image/png"}


@dataclass(frozen=True, slots=True)
class OptimizedImage:
    data: bytes
    content_type: str
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class ImageOptimizer:
    """Convert provider output to ``image_format``.

    With ``max_width`` or ``max_height`` set the image is shrunk to fit inside
    the box, keeping its aspect ratio. Images are never enlarged.
    """

    image_format: str = "webp"
    quality: int = 85
    max_width: int | None = None
    max_height: int | None = None

    def __post_init__(self) -> None:
        if self.image_format not in _PIL_FORMATS:
            raise ValueError(f"unsupported image format: {self.image_format!r}")
        if not 1 <= self.quality <= 100:
            raise ValueError("quality must be between 1 and 100")

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self.image_format]

    def optimize(self, data: bytes) -> OptimizedImage:
        try:
            with Image.open(io.BytesIO(data)) as source:
                image = source.copy()
        except (OSError, Image.DecompressionBombError) as exc:
            raise ImageProcessingError(f"cannot decode generated image: {exc}") from exc

        if self.max_width or self.max_height:
            image.thumbnail(
                (self.max_width or image.width, self.max_height or image.height),
                Image.Resampling.LANCZOS,
            )
        image = self._convert_mode(image)

        options: dict[str, object] = {"format": _PIL_FORMATS[self.image_format]}
        if self.image_format == "png":
            options["optimize"] = True
        else:
            options["quality"] = self.quality
        buffer = io.BytesIO()
        try:
            image.save(buffer, **options)
        except OSError as exc:
            raise ImageProcessingError(f"cannot encode image as {self.image_format}: {exc}") from exc
        return OptimizedImage(
            data=buffer.getvalue(),
            content_type=self.content_type,
            width=image.width,
            height=image.height,
        )

    def _convert_mode(self, image: Image.Image) -> Image.Image:
        if self.image_format == "jpeg":
            return image if image.mode in ("RGB", "L") else image.convert("RGB")
        if self.image_format == "webp" and image.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in image.getbands() or "transparency" in image.info
            return image.convert("RGBA" if has_alpha else "RGB")
        return image


__all__ = ["ImageOptimizer", "OptimizedImage"]
