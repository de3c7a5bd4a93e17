"""Image format detection and derivative size tiers."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path


class ImageSize(StrEnum):
    """Derivative resolution tiers, bounded on the longer edge."""

    THUMBNAIL = "thumbnail"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def max_dimension(self) -> int:
        return _MAX_DIMENSIONS[self]

    @property
    def default_quality(self) -> int:
        return _DEFAULT_QUALITY[self]


_MAX_DIMENSIONS = {
    ImageSize.THUMBNAIL: 300,
    ImageSize.MEDIUM: 1024,
    ImageSize.LARGE: 2048,
}
_DEFAULT_QUALITY = {
    ImageSize.THUMBNAIL: 70,
    ImageSize.MEDIUM: 80,
    ImageSize.LARGE: 85,
}


class ImageFormat(StrEnum):
    HEIC = "heic"
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"
    UNKNOWN = "unknown"

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES.get(self, "image/jpeg")

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self, "jpg")

    @property
    def pillow_format(self) -> str:
        return _PILLOW_FORMATS.get(self, "JPEG")

    @property
    def is_highly_compressed(self) -> bool:
        """Formats whose encoders reach small sizes at low numeric quality."""
        return self in {ImageFormat.HEIC, ImageFormat.WEBP}

    @property
    def is_lossless(self) -> bool:
        return self in {ImageFormat.PNG, ImageFormat.GIF}


_MIME_TYPES = {
    ImageFormat.HEIC: "image/heic",
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.GIF: "image/gif",
    ImageFormat.WEBP: "image/webp",
}
_EXTENSIONS = {
    ImageFormat.HEIC: "heic",
    ImageFormat.JPEG: "jpg",
    ImageFormat.PNG: "png",
    ImageFormat.GIF: "gif",
    ImageFormat.WEBP: "webp",
}
_PILLOW_FORMATS = {
    ImageFormat.HEIC: "HEIF",
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.GIF: "GIF",
    ImageFormat.WEBP: "WEBP",
}
_HEIC_BRANDS = (b"hei", b"hev", b"mif1", b"msf1")


def detect_format(data: bytes) -> ImageFormat:
    """Detect the container format from leading magic bytes."""
    if len(data) < 12:
        return ImageFormat.UNKNOWN
    if data[:3] == b"\xff\xd8\xff":
        return ImageFormat.JPEG
    if data[:4] == b"\x89PNG":
        return ImageFormat.PNG
    if data[:4] == b"GIF8":
        return ImageFormat.GIF
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ImageFormat.WEBP
    if data[4:8] == b"ftyp" and data[8:12].startswith(_HEIC_BRANDS):
        return ImageFormat.HEIC
    return ImageFormat.UNKNOWN


def format_from_mime(mime: str) -> ImageFormat:
    value = str(mime or "").strip().lower()
    if value in {"image/heic", "image/heif"}:
        return ImageFormat.HEIC
    if value in {"image/jpeg", "image/jpg"}:
        return ImageFormat.JPEG
    if value == "image/png":
        return ImageFormat.PNG
    if value == "image/gif":
        return ImageFormat.GIF
    if value == "image/webp":
        return ImageFormat.WEBP
    return ImageFormat.UNKNOWN


def format_from_path(path: str | Path) -> ImageFormat:
    ext = Path(path).suffix.lower().lstrip(".")
    if ext in {"heic", "heif"}:
        return ImageFormat.HEIC
    if ext in {"jpg", "jpeg"}:
        return ImageFormat.JPEG
    if ext == "png":
        return ImageFormat.PNG
    if ext == "gif":
        return ImageFormat.GIF
    if ext == "webp":
        return ImageFormat.WEBP
    return ImageFormat.UNKNOWN


def format_from_pillow(name: str | None) -> ImageFormat:
    value = str(name or "").strip().upper()
    for fmt, pillow_name in _PILLOW_FORMATS.items():
        if value == pillow_name:
            return fmt
    if value == "MPO":
        return ImageFormat.JPEG
    return ImageFormat.UNKNOWN
