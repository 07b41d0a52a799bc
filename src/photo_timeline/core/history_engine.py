from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .image_buffer import ImageBuffer
from .operations import (
    ColorMode,
    GeometricOp,
    InvalidParameterError,
    Operation,
    OperationParams,
)
from .transforms import TransformError, TransformLibrary

logger = logging.getLogger(__name__)


class HistoryError(RuntimeError):
    pass


class InvalidStateError(HistoryError):
    pass


class TransformFailureError(HistoryError):
    pass


class IndexOutOfRangeError(HistoryError, IndexError):
    pass


@dataclass(frozen=True)
class HistoryEntry:
    """Materialized state after applying ``operations_so_far`` to the base image."""

    buffer: ImageBuffer
    operations_so_far: tuple[Operation, ...]
    color_mode: ColorMode


class HistoryEngine:
    """
    Linear edit history with one owned buffer per prefix of the operation log.

    Entry 0 is a clone of the base image, entry k the state after the first k
    operations. Color operations are always computed from the base image,
    geometric operations from the buffer at the cursor. Undo/redo/jump only move
    the cursor; a new operation discards everything after it.

    All public methods serialize on a single re-entrant lock.
    """

    def __init__(
        self,
        transforms: TransformLibrary | None = None,
        on_change: Optional[Callable[["HistoryEngine"], None]] = None,
    ) -> None:
        self.transforms = transforms or TransformLibrary()
        self._listener = on_change
        self._lock = threading.RLock()
        self._base: Optional[ImageBuffer] = None
        self._log: list[Operation] = []
        self._entries: list[HistoryEntry] = []
        self._cursor = -1

    def set_listener(self, callback: Optional[Callable[["HistoryEngine"], None]]) -> None:
        self._listener = callback

    # --- lifecycle -----------------------------------------------------------
    def load_image(self, buffer: ImageBuffer) -> None:
        """Take ownership of ``buffer`` as the new base image and drop the old session."""
        with self._lock:
            if buffer is self._base or any(entry.buffer is buffer for entry in self._entries):
                raise InvalidStateError("Buffer gehört bereits zur Historie.")
            first = buffer.clone()
            self._release_all()
            self._base = buffer
            self._entries = [HistoryEntry(first, (), ColorMode.ORIGINAL)]
            self._cursor = 0
            logger.info("Bild geladen: %sx%s, %d Kanäle", buffer.width, buffer.height, buffer.channels)
        self._emit()

    def reset(self) -> None:
        with self._lock:
            was_loaded = self._base is not None or bool(self._entries)
            self._release_all()
            if was_loaded:
                logger.info("Historie zurückgesetzt.")
        self._emit()

    def close(self) -> None:
        self.reset()

    def __enter__(self) -> "HistoryEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- edits ---------------------------------------------------------------
    def apply_color(self, mode: ColorMode, params: Optional[OperationParams] = None) -> Operation:
        with self._lock:
            base = self._require_base("apply_color")
            operation = self._build(lambda: Operation.color(
                mode, self.transforms.resolve_color_params(mode, params)
            ))
            result = self._run(operation, base, base)
            self._commit(operation, result, operation.color_mode)
        self._emit()
        return operation

    def apply_geometric(self, op: GeometricOp, params: Optional[OperationParams] = None) -> Operation:
        with self._lock:
            self._require_base("apply_geometric")
            current = self._entries[self._cursor]
            operation = self._build(lambda: Operation.geometric(
                op, self.transforms.resolve_geometric_params(op, params)
            ))
            result = self._run(operation, self._base, current.buffer)
            self._commit(operation, result, current.color_mode)
        self._emit()
        return operation

    def delete_operation(self, index: int) -> Operation:
        """Remove ``operation_log[index]`` and replay the remaining log from the base."""
        with self._lock:
            if not 0 <= index < len(self._log):
                logger.warning("delete_operation: Index %s außerhalb von 0..%d", index, len(self._log) - 1)
                raise IndexOutOfRangeError(f"Operation {index} existiert nicht.")
            removed = self._log[index]
            new_log = self._log[:index] + self._log[index + 1:]
            # a non-empty log implies a loaded base image
            rebuilt = self._replay(new_log)
            self._release_entries()
            self._entries = rebuilt
            self._log = new_log
            self._cursor = len(self._entries) - 1
            logger.info(
                "Operation %s entfernt, %d Schritte neu berechnet.", removed.name, len(new_log)
            )
        self._emit()
        return removed

    # --- navigation ----------------------------------------------------------
    def undo(self) -> bool:
        with self._lock:
            if self._cursor <= 0:
                return False
            self._cursor -= 1
        self._emit()
        return True

    def redo(self) -> bool:
        with self._lock:
            if self._cursor >= len(self._entries) - 1:
                return False
            self._cursor += 1
        self._emit()
        return True

    def jump_to(self, index: int) -> None:
        with self._lock:
            if not 0 <= index < len(self._entries):
                logger.warning("jump_to: Index %s außerhalb von 0..%d", index, len(self._entries) - 1)
                raise IndexOutOfRangeError(f"Zustand {index} existiert nicht.")
            self._cursor = index
        self._emit()

    # --- queries -------------------------------------------------------------
    @property
    def cursor(self) -> int:
        with self._lock:
            return self._cursor

    @property
    def entries(self) -> tuple[HistoryEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def is_loaded(self) -> bool:
        with self._lock:
            return self._base is not None

    def base_buffer(self) -> Optional[ImageBuffer]:
        with self._lock:
            return self._base

    def current_buffer(self) -> Optional[ImageBuffer]:
        with self._lock:
            if self._cursor < 0:
                return None
            return self._entries[self._cursor].buffer

    def current_operations(self) -> tuple[Operation, ...]:
        with self._lock:
            return tuple(self._log)

    def current_color_mode(self) -> ColorMode:
        with self._lock:
            if self._cursor < 0:
                return ColorMode.ORIGINAL
            return self._entries[self._cursor].color_mode

    def can_undo(self) -> bool:
        with self._lock:
            return self._cursor > 0

    def can_redo(self) -> bool:
        with self._lock:
            return self._cursor < len(self._entries) - 1

    # --- internals -----------------------------------------------------------
    def _require_base(self, action: str) -> ImageBuffer:
        if self._base is None or self._cursor < 0:
            logger.warning("%s ohne geladenes Bild ignoriert.", action)
            raise InvalidStateError("Kein Bild geladen.")
        return self._base

    def _build(self, factory: Callable[[], Operation]) -> Operation:
        try:
            return factory()
        except InvalidParameterError as exc:
            logger.warning("Ungültige Parameter: %s", exc)
            raise

    def _run(self, operation: Operation, base: ImageBuffer, previous: ImageBuffer) -> ImageBuffer:
        try:
            if operation.is_color:
                return self.transforms.apply_color(base, operation.color_mode, operation.params)
            return self.transforms.apply_geometric(previous, operation.geometric_op, operation.params)
        except TransformError as exc:
            logger.error("Transformation %s fehlgeschlagen: %s", operation.name, exc)
            raise TransformFailureError(str(exc)) from exc

    def _commit(self, operation: Operation, result: ImageBuffer, color_mode: ColorMode) -> None:
        try:
            owned = result.clone()
        finally:
            result.release()
        dropped = self._entries[self._cursor + 1:]
        del self._entries[self._cursor + 1:]
        for entry in dropped:
            entry.buffer.release()
        if dropped:
            logger.debug("%d Redo-Schritte verworfen.", len(dropped))
        # the log always has exactly one operation per entry after the first
        self._log = self._log[: self._cursor] + [operation]
        self._entries.append(HistoryEntry(owned, tuple(self._log), color_mode))
        self._cursor = len(self._entries) - 1
        logger.info("Operation angewendet: %s (Schritt %d)", operation.name, self._cursor)

    def _replay(self, log: list[Operation]) -> list[HistoryEntry]:
        entries = [HistoryEntry(self._base.clone(), (), ColorMode.ORIGINAL)]
        try:
            for i, operation in enumerate(log):
                previous = entries[-1]
                result = self._run(operation, self._base, previous.buffer)
                try:
                    owned = result.clone()
                finally:
                    result.release()
                color_mode = operation.color_mode if operation.is_color else previous.color_mode
                entries.append(HistoryEntry(owned, tuple(log[: i + 1]), color_mode))
        except Exception:
            for entry in entries:
                entry.buffer.release()
            raise
        return entries

    def _release_entries(self) -> None:
        entries, self._entries = self._entries, []
        self._cursor = -1
        for entry in entries:
            entry.buffer.release()

    def _release_all(self) -> None:
        self._release_entries()
        self._log = []
        base, self._base = self._base, None
        if base is not None:
            base.release()

    def _emit(self) -> None:
        if self._listener:
            self._listener(self)


__all__ = [
    "HistoryEngine",
    "HistoryEntry",
    "HistoryError",
    "IndexOutOfRangeError",
    "InvalidStateError",
    "TransformFailureError",
]
