from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, ImageQt, UnidentifiedImageError

from .image_buffer import BufferLedger, ImageBuffer

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tiff"}


class ImageLoadError(RuntimeError):
    pass


def is_supported(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_EXTENSIONS


def normalize_mode(image: Image.Image) -> Image.Image:
    """Bring decoded pixels into one of the modes the transforms accept (L, RGB, RGBA)."""
    if image.mode in ("L", "RGB", "RGBA"):
        return image
    if image.mode == "LA" or (image.mode == "P" and "transparency" in image.info):
        return image.convert("RGBA")
    if image.mode in ("1", "I;16", "I", "F"):
        return image.convert("L")
    return image.convert("RGB")


def decode_image(path: Path, ledger: Optional[BufferLedger] = None) -> ImageBuffer:
    """Decode ``path`` into a new buffer owned by the caller."""
    if not path.exists():
        raise ImageLoadError(f"Datei wurde nicht gefunden: {path}")
    if not is_supported(path):
        raise ImageLoadError(f"Das Dateiformat {path.suffix} wird nicht unterstützt.")
    try:
        with Image.open(path) as opened:
            opened.load()
            image = normalize_mode(ImageOps.exif_transpose(opened))
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        raise ImageLoadError(f"Bild konnte nicht geladen werden: {exc}") from exc
    logger.debug("Dekodiert: %s (%s, %sx%s)", path, image.mode, image.width, image.height)
    return ImageBuffer(image, ledger)


def buffer_from_qimage(frame, ledger: Optional[BufferLedger] = None) -> ImageBuffer:
    """Convert a captured QImage into a new buffer owned by the caller."""
    if frame is None or frame.isNull():
        raise ImageLoadError("Es wurde kein Kamerabild aufgenommen.")
    try:
        with ImageQt.fromqimage(frame) as captured:
            captured.load()
            image = normalize_mode(captured)
            if image is captured:
                image = captured.copy()
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        raise ImageLoadError(f"Kamerabild konnte nicht übernommen werden: {exc}") from exc
    logger.debug("Kamerabild übernommen (%s, %sx%s)", image.mode, image.width, image.height)
    return ImageBuffer(image, ledger)


__all__ = [
    "ImageLoadError",
    "SUPPORTED_EXTENSIONS",
    "buffer_from_qimage",
    "decode_image",
    "is_supported",
    "normalize_mode",
]
