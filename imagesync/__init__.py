"""imagesync - offline-first image derivative, upload and deletion sync."""

__version__ = "0.1.0"
__logo__ = "🖼"
