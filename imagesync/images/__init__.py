"""Image formats, derivative generation, caching and original storage."""

from imagesync.images.cache import TieredCache
from imagesync.images.derivatives import DerivativeGenerator, decode_image
from imagesync.images.formats import (
    ImageFormat,
    ImageSize,
    detect_format,
    format_from_mime,
    format_from_path,
)
from imagesync.images.originals import OriginalImageStore

__all__ = [
    "DerivativeGenerator",
    "ImageFormat",
    "ImageSize",
    "OriginalImageStore",
    "TieredCache",
    "decode_image",
    "detect_format",
    "format_from_mime",
    "format_from_path",
]
