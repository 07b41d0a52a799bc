from __future__ import annotations

import numbers
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class InvalidParameterError(ValueError):
    pass


class OperationKind(str, Enum):
    COLOR = "color"
    GEOMETRIC = "geometric"


class ColorMode(str, Enum):
    ORIGINAL = "original"
    GRAYSCALE = "grayscale"
    HSV = "hsv"
    BINARY = "binary"


class GeometricOp(str, Enum):
    ROTATE_90 = "rotate90"
    ROTATE_180 = "rotate180"
    FLIP_HORIZONTAL = "flipHorizontal"
    FLIP_VERTICAL = "flipVertical"
    CROP_CENTER = "crop"
    RESIZE = "resize"


DEFAULT_BINARY_THRESHOLD = 120
DEFAULT_RESIZE = (300, 300)


def _integral(value, label: str) -> int:
    # numpy integers are accepted, bool is not
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidParameterError(f"{label} muss eine Ganzzahl sein: {value!r}")
    return int(value)


@dataclass(frozen=True)
class BinaryParams:
    threshold: int = DEFAULT_BINARY_THRESHOLD

    def __post_init__(self) -> None:
        threshold = _integral(self.threshold, "Schwellwert")
        if not 0 <= threshold <= 255:
            raise InvalidParameterError(f"Schwellwert außerhalb von 0..255: {threshold}")
        object.__setattr__(self, "threshold", threshold)


@dataclass(frozen=True)
class ResizeParams:
    width: int = DEFAULT_RESIZE[0]
    height: int = DEFAULT_RESIZE[1]

    def __post_init__(self) -> None:
        for name in ("width", "height"):
            value = _integral(getattr(self, name), name)
            if value <= 0:
                raise InvalidParameterError("Zieldimensionen müssen größer als 0 sein.")
            object.__setattr__(self, name, value)


OperationParams = Union[BinaryParams, ResizeParams]

_GEOMETRIC_NAMES = {
    GeometricOp.ROTATE_90: "Rotate 90°",
    GeometricOp.ROTATE_180: "Rotate 180°",
    GeometricOp.FLIP_HORIZONTAL: "Flip H",
    GeometricOp.FLIP_VERTICAL: "Flip V",
    GeometricOp.CROP_CENTER: "Crop Center",
}


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InvalidParameterError(f"Unbekannter Wert für {enum_cls.__name__}: {value!r}") from exc


def validate_color_params(mode: ColorMode, params: Optional[OperationParams]) -> Optional[BinaryParams]:
    mode = _coerce(ColorMode, mode)
    if params is None:
        return None
    if mode is not ColorMode.BINARY or not isinstance(params, BinaryParams):
        raise InvalidParameterError(f"Parameter {params!r} passen nicht zu Farbmodus {mode.value}.")
    return params


def validate_geometric_params(op: GeometricOp, params: Optional[OperationParams]) -> Optional[ResizeParams]:
    op = _coerce(GeometricOp, op)
    if params is None:
        return None
    if op is not GeometricOp.RESIZE or not isinstance(params, ResizeParams):
        raise InvalidParameterError(f"Parameter {params!r} passen nicht zu Operation {op.value}.")
    return params


def color_operation_name(mode: ColorMode) -> str:
    return ColorMode(mode).value.capitalize()


def geometric_operation_name(op: GeometricOp, params: Optional[ResizeParams] = None) -> str:
    op = GeometricOp(op)
    if op is GeometricOp.RESIZE:
        width, height = (params.width, params.height) if params else DEFAULT_RESIZE
        return f"Resize {width}×{height}"
    return _GEOMETRIC_NAMES[op]


@dataclass(frozen=True)
class Operation:
    """One immutable step of the edit log."""

    kind: OperationKind
    name: str
    color_mode: Optional[ColorMode] = None
    geometric_op: Optional[GeometricOp] = None
    params: Optional[OperationParams] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_color(self) -> bool:
        return self.kind is OperationKind.COLOR

    @property
    def is_geometric(self) -> bool:
        return self.kind is OperationKind.GEOMETRIC

    @classmethod
    def color(cls, mode: ColorMode, params: Optional[OperationParams] = None) -> "Operation":
        mode = _coerce(ColorMode, mode)
        checked = validate_color_params(mode, params)
        return cls(
            kind=OperationKind.COLOR,
            name=color_operation_name(mode),
            color_mode=mode,
            params=checked,
        )

    @classmethod
    def geometric(cls, op: GeometricOp, params: Optional[OperationParams] = None) -> "Operation":
        op = _coerce(GeometricOp, op)
        checked = validate_geometric_params(op, params)
        return cls(
            kind=OperationKind.GEOMETRIC,
            name=geometric_operation_name(op, checked),
            geometric_op=op,
            params=checked,
        )


__all__ = [
    "BinaryParams",
    "ColorMode",
    "DEFAULT_BINARY_THRESHOLD",
    "DEFAULT_RESIZE",
    "GeometricOp",
    "InvalidParameterError",
    "Operation",
    "OperationKind",
    "OperationParams",
    "ResizeParams",
    "color_operation_name",
    "geometric_operation_name",
    "validate_color_params",
    "validate_geometric_params",
]
