"""Multi-resolution derivative generation."""

from __future__ import annotations

import asyncio
import io
from concurrent.futures import ThreadPoolExecutor

from loguru import logger
from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

from imagesync.images.formats import ImageFormat, ImageSize, format_from_pillow

# HEIC originals decode and the large derivative can stay HEIC.
register_heif_opener()


def decode_image(data: bytes) -> Image.Image:
    """Decode bytes into a fully loaded image in display orientation.

    EXIF orientation is applied so width/height are the displayed pixel
    dimensions rather than the sensor layout.
    """
    with Image.open(io.BytesIO(data)) as raw:
        source_format = raw.format
        image = ImageOps.exif_transpose(raw)
        image.load()
    # exif_transpose returns a copy without the container format.
    image.format = source_format
    return image


def target_dimensions(width: int, height: int, max_dimension: int) -> tuple[int, int] | None:
    """Scale the longer edge down to ``max_dimension``; None when no resize is needed."""
    longest = max(width, height)
    if longest <= max_dimension:
        return None
    ratio = max_dimension / float(longest)
    if width >= height:
        return max_dimension, max(1, round(height * ratio))
    return max(1, round(width * ratio)), max_dimension


def encoder_available(fmt: ImageFormat) -> bool:
    Image.init()
    return fmt is not ImageFormat.UNKNOWN and fmt.pillow_format in Image.SAVE


class DerivativeGenerator:
    """Produces thumbnail/medium/large encodings of one source image.

    The three sizes render concurrently on a worker pool; a size whose render
    or encode fails is left out of the result.
    """

    def __init__(
        self,
        *,
        executor: ThreadPoolExecutor | None = None,
        max_workers: int = 3,
        thumbnail_quality: int = ImageSize.THUMBNAIL.default_quality,
        medium_quality: int = ImageSize.MEDIUM.default_quality,
        large_quality: int = ImageSize.LARGE.default_quality,
        large_compressed_quality: int = 60,
    ) -> None:
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="imagesync-derive",
        )
        self.thumbnail_quality = _clamp_quality(thumbnail_quality)
        self.medium_quality = _clamp_quality(medium_quality)
        self.large_quality = _clamp_quality(large_quality)
        self.large_compressed_quality = _clamp_quality(large_compressed_quality)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    async def generate_sizes(
        self,
        image: Image.Image,
        *,
        preserve_format: bool = True,
        original_bytes: bytes | None = None,
    ) -> dict[ImageSize, bytes]:
        loop = asyncio.get_running_loop()
        # Worker threads share the source; make sure its pixels are decoded first.
        await loop.run_in_executor(self._executor, image.load)
        large_format = self._large_format(image, preserve_format=preserve_format)

        async def _one(size: ImageSize) -> tuple[ImageSize, bytes | None]:
            if size is ImageSize.LARGE and original_bytes:
                return size, bytes(original_bytes)
            fmt = large_format if size is ImageSize.LARGE else ImageFormat.JPEG
            try:
                data = await loop.run_in_executor(self._executor, self._render, image, size, fmt)
            except Exception as e:
                logger.warning(f"Derivative {size.value} failed: {e}")
                return size, None
            return size, data

        results = await asyncio.gather(*(_one(size) for size in ImageSize))
        return {size: data for size, data in results if data}

    def quality_for(self, size: ImageSize, fmt: ImageFormat) -> int:
        if size is ImageSize.THUMBNAIL:
            return self.thumbnail_quality
        if size is ImageSize.MEDIUM:
            return self.medium_quality
        if fmt.is_highly_compressed:
            return self.large_compressed_quality
        return self.large_quality

    def _large_format(self, image: Image.Image, *, preserve_format: bool) -> ImageFormat:
        if not preserve_format:
            return ImageFormat.JPEG
        fmt = format_from_pillow(image.format)
        if encoder_available(fmt):
            return fmt
        if fmt is not ImageFormat.UNKNOWN:
            logger.debug(f"No encoder for {fmt.value}, large derivative falls back to JPEG")
        return ImageFormat.JPEG

    def _render(self, image: Image.Image, size: ImageSize, fmt: ImageFormat) -> bytes:
        dims = target_dimensions(image.width, image.height, size.max_dimension)
        rendered = image if dims is None else image.resize(dims, Image.Resampling.LANCZOS)
        return self._encode(rendered, fmt, self.quality_for(size, fmt))

    @staticmethod
    def _encode(image: Image.Image, fmt: ImageFormat, quality: int) -> bytes:
        buffer = io.BytesIO()
        if fmt is ImageFormat.JPEG:
            _flatten(image).save(buffer, format="JPEG", quality=quality, optimize=True)
        elif fmt.is_lossless:
            image.save(buffer, format=fmt.pillow_format, optimize=True)
        else:
            image.save(buffer, format=fmt.pillow_format, quality=quality)
        return buffer.getvalue()


def _flatten(image: Image.Image) -> Image.Image:
    """Composite transparency onto white; JPEG has no alpha channel."""
    if image.mode == "RGB":
        return image
    if image.mode in {"RGBA", "LA", "P"}:
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def _clamp_quality(value: int) -> int:
    return min(100, max(1, int(value)))
