from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .image_buffer import ImageBuffer
from .operations import Operation

logger = logging.getLogger(__name__)

_EXTENSIONS = {"PNG": ".png", "JPEG": ".jpg", "WEBP": ".webp", "BMP": ".bmp", "TIFF": ".tiff"}
_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass
class ExportConfig:
    format: str = "PNG"
    directory: Optional[Path] = None


class ExportServiceError(Exception):
    pass


def export_filename(operations: Iterable[Operation], format: str = "PNG") -> str:
    """``processed_<names>.<ext>``, or ``processed_image.<ext>`` for an untouched image."""
    extension = _EXTENSIONS.get(format.upper(), ".png")
    names = [op.name for op in operations]
    if not names:
        return f"processed_image{extension}"
    parts = [_UNSAFE.sub("-", name.replace("°", "").replace("×", "x")).strip("-") for name in names]
    return f"processed_{'_'.join(parts)}{extension}"


class ExportService:
    def __init__(self, config: ExportConfig | None = None) -> None:
        self.config = config or ExportConfig()

    def export(
        self,
        buffer: Optional[ImageBuffer],
        operations: Iterable[Operation],
        directory: Path | None = None,
    ) -> Path:
        if buffer is None:
            raise ExportServiceError("Kein Bild zum Exportieren vorhanden.")
        target_dir = directory or self.config.directory or Path.cwd()
        target_path = target_dir / export_filename(operations, self.config.format)
        return self.save(buffer, target_path)

    def save(self, buffer: ImageBuffer, target_path: Path) -> Path:
        image = buffer.to_display_image()
        if self.config.format.upper() == "JPEG" and image.mode == "RGBA":
            image = image.convert("RGB")
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            image.save(target_path, format=self.config.format)
        except (OSError, ValueError) as exc:
            raise ExportServiceError(f"Speichern fehlgeschlagen: {exc}") from exc
        finally:
            image.close()
        logger.info("Exportiert: %s", target_path)
        return target_path


__all__ = ["ExportConfig", "ExportService", "ExportServiceError", "export_filename"]
