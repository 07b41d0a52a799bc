from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np
from PIL import Image

from .image_buffer import ImageBuffer
from .operations import (
    BinaryParams,
    ColorMode,
    DEFAULT_BINARY_THRESHOLD,
    DEFAULT_RESIZE,
    GeometricOp,
    OperationParams,
    ResizeParams,
    validate_color_params,
    validate_geometric_params,
)
from .settings import TransformSettings

logger = logging.getLogger(__name__)

SUPPORTED_MODES = {"L", "RGB", "RGBA", "HSV"}


class TransformError(RuntimeError):
    pass


class TransformLibrary:
    """
    Stateless pixel kernels for color and geometric edits.

    Every call borrows ``src`` and returns a new buffer owned by the caller; the
    input is never mutated or released.
    """

    def __init__(self, settings: TransformSettings | None = None) -> None:
        self.binary_threshold = settings.binary_threshold if settings else DEFAULT_BINARY_THRESHOLD
        self.crop_ratio = settings.crop_ratio if settings else 0.7
        self.default_resize = (
            (settings.resize_width, settings.resize_height) if settings else DEFAULT_RESIZE
        )
        self.resample_method = settings.resample_method if settings else Image.Resampling.BILINEAR

    # --- parameter defaults --------------------------------------------------
    def resolve_color_params(
        self, mode: ColorMode, params: Optional[OperationParams]
    ) -> Optional[BinaryParams]:
        checked = validate_color_params(mode, params)
        if ColorMode(mode) is ColorMode.BINARY and checked is None:
            return BinaryParams(self.binary_threshold)
        return checked

    def resolve_geometric_params(
        self, op: GeometricOp, params: Optional[OperationParams]
    ) -> Optional[ResizeParams]:
        checked = validate_geometric_params(op, params)
        if GeometricOp(op) is GeometricOp.RESIZE and checked is None:
            return ResizeParams(*self.default_resize)
        return checked

    # --- color ---------------------------------------------------------------
    def apply_color(
        self, src: ImageBuffer, mode: ColorMode, params: Optional[BinaryParams] = None
    ) -> ImageBuffer:
        mode = ColorMode(mode)
        image = self._checked_source(src)
        try:
            if mode is ColorMode.ORIGINAL:
                result = image.copy()
            elif mode is ColorMode.GRAYSCALE:
                result = self._to_gray(image)
            elif mode is ColorMode.HSV:
                result = self._to_hsv(image)
            else:
                threshold = params.threshold if params else self.binary_threshold
                result = self._to_binary(image, threshold)
        except (OSError, ValueError) as exc:
            raise TransformError(f"Farbtransformation {mode.value} fehlgeschlagen: {exc}") from exc
        logger.debug("apply_color %s: %s -> %s", mode.value, image.mode, result.mode)
        return src.wrap(result)

    def _to_gray(self, image: Image.Image) -> Image.Image:
        if len(image.getbands()) == 1:
            return image.copy()
        if image.mode == "HSV":
            raise TransformError("HSV-Puffer können nicht in Graustufen umgewandelt werden.")
        return image.convert("L")

    def _to_hsv(self, image: Image.Image) -> Image.Image:
        if image.mode == "HSV":
            return image.copy()
        # single-channel and RGBA sources are widened/flattened to RGB first
        return image.convert("RGB").convert("HSV")

    def _to_binary(self, image: Image.Image, threshold: int) -> Image.Image:
        gray = self._to_gray(image)
        arr = np.asarray(gray, dtype=np.uint8)
        out = np.where(arr > threshold, 255, 0).astype(np.uint8)
        gray.close()
        return Image.fromarray(out)

    # --- geometry ------------------------------------------------------------
    def apply_geometric(
        self, src: ImageBuffer, op: GeometricOp, params: Optional[ResizeParams] = None
    ) -> ImageBuffer:
        op = GeometricOp(op)
        image = self._checked_source(src)
        try:
            if op is GeometricOp.ROTATE_90:
                result = image.transpose(Image.Transpose.ROTATE_270)
            elif op is GeometricOp.ROTATE_180:
                result = image.transpose(Image.Transpose.ROTATE_180)
            elif op is GeometricOp.FLIP_HORIZONTAL:
                result = image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
            elif op is GeometricOp.FLIP_VERTICAL:
                result = image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
            elif op is GeometricOp.CROP_CENTER:
                result = image.crop(self.center_crop_box(image.width, image.height))
            else:
                width, height = (params.width, params.height) if params else self.default_resize
                if width <= 0 or height <= 0:
                    raise TransformError("Zieldimensionen müssen größer als 0 sein.")
                result = image.resize((width, height), self.resample_method)
        except (OSError, ValueError) as exc:
            raise TransformError(f"Geometrische Transformation {op.value} fehlgeschlagen: {exc}") from exc
        logger.debug("apply_geometric %s: %sx%s -> %sx%s", op.value, *image.size, *result.size)
        return src.wrap(result)

    def center_crop_box(self, width: int, height: int) -> tuple[int, int, int, int]:
        side = max(1, int(min(width, height) * self.crop_ratio))
        left = math.floor((width - side) / 2)
        top = math.floor((height - side) / 2)
        return left, top, left + side, top + side

    def _checked_source(self, src: ImageBuffer) -> Image.Image:
        image = src.image
        if image.mode not in SUPPORTED_MODES:
            raise TransformError(
                f"Nicht unterstützter Bildmodus {image.mode} ({len(image.getbands())} Kanäle)."
            )
        if image.width <= 0 or image.height <= 0:
            raise TransformError("Ungültige Bildquelle.")
        return image


__all__ = ["TransformError", "TransformLibrary", "SUPPORTED_MODES"]
