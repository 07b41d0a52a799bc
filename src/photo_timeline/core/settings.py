from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from PIL import Image


@dataclass
class TransformSettings:
    binary_threshold: int
    crop_ratio: float
    resize_width: int
    resize_height: int
    resample_method: int


@dataclass
class ExportSettings:
    format: str
    directory: Optional[Path]


@dataclass
class LoggingSettings:
    file_level: int = logging.DEBUG
    console_level: int = logging.INFO
    directory: Optional[Path] = None


@dataclass
class AppSettings:
    transforms: TransformSettings
    export: ExportSettings
    logging: LoggingSettings = field(default_factory=LoggingSettings)


DEFAULT_SETTINGS = {
    "transforms": {
        "binary_threshold": 120,
        "crop_ratio": 0.7,
        "resize_width": 300,
        "resize_height": 300,
        "resample_method": "BILINEAR",
    },
    "export": {
        "format": "PNG",
        "directory": None,
    },
    "logging": {
        "file_level": "DEBUG",
        "console_level": "INFO",
        "directory": None,
    },
}


def load_settings(path: Path | None = None) -> AppSettings:
    base_path = path or Path(__file__).resolve().parents[1] / "config" / "settings.json"
    data = DEFAULT_SETTINGS
    if base_path.exists():
        try:
            with base_path.open("r", encoding="utf-8") as fh:
                file_data = json.load(fh)
                data = _merge_settings(DEFAULT_SETTINGS, file_data)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Settings-Datei ungültig: {exc}") from exc

    transforms = data["transforms"]
    export = data["export"]

    resample_attr = str(transforms.get("resample_method", "BILINEAR")).upper()
    resample_method = getattr(Image.Resampling, resample_attr, Image.Resampling.BILINEAR)

    try:
        transform_settings = TransformSettings(
            binary_threshold=int(transforms.get("binary_threshold", 120)),
            crop_ratio=float(transforms.get("crop_ratio", 0.7)),
            resize_width=int(transforms.get("resize_width", 300)),
            resize_height=int(transforms.get("resize_height", 300)),
            resample_method=resample_method,
        )
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"Settings-Werte ungültig: {exc}") from exc
    _validate_transforms(transform_settings)

    directory = export.get("directory")
    export_settings = ExportSettings(
        format=str(export.get("format", "PNG")).upper(),
        directory=Path(directory).expanduser() if directory else None,
    )

    log = data["logging"]
    log_directory = log.get("directory")
    logging_settings = LoggingSettings(
        file_level=parse_level(log.get("file_level", "DEBUG")),
        console_level=parse_level(log.get("console_level", "INFO")),
        directory=Path(log_directory).expanduser() if log_directory else None,
    )

    return AppSettings(transforms=transform_settings, export=export_settings, logging=logging_settings)


def parse_level(name: Any) -> int:
    """Map a level name such as ``"warning"`` to its ``logging`` constant."""
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        raise RuntimeError(f"Unbekannter Log-Level: {name}")
    return level


def _validate_transforms(settings: TransformSettings) -> None:
    if not 0 <= settings.binary_threshold <= 255:
        raise RuntimeError(f"binary_threshold außerhalb von 0..255: {settings.binary_threshold}")
    if not 0.0 < settings.crop_ratio <= 1.0:
        raise RuntimeError(f"crop_ratio muss in (0, 1] liegen: {settings.crop_ratio}")
    if settings.resize_width <= 0 or settings.resize_height <= 0:
        raise RuntimeError("Standard-Zielgröße muss größer als 0 sein.")


def _merge_settings(default: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for key, value in default.items():
        if key in overrides:
            if isinstance(value, dict) and isinstance(overrides[key], dict):
                merged[key] = _merge_settings(value, overrides[key])
            else:
                merged[key] = overrides[key]
        else:
            merged[key] = value
    # Include extra keys from overrides
    for key, value in overrides.items():
        if key not in merged:
            merged[key] = value
    return merged
