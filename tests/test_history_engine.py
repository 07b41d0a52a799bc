import random
import threading
import unittest

import numpy as np
from PIL import Image

from photo_timeline.core.history_engine import (
    HistoryEngine,
    HistoryError,
    IndexOutOfRangeError,
    InvalidStateError,
    TransformFailureError,
)
from photo_timeline.core.image_buffer import BufferLedger, ImageBuffer
from photo_timeline.core.operations import (
    BinaryParams,
    ColorMode,
    GeometricOp,
    InvalidParameterError,
    ResizeParams,
)
from photo_timeline.core.transforms import TransformError, TransformLibrary


def _gradient_image(size=(100, 100)) -> Image.Image:
    width, height = size
    x = np.tile(np.arange(width, dtype=np.uint16), (height, 1))
    y = np.tile(np.arange(height, dtype=np.uint16)[:, None], (1, width))
    arr = np.stack([(x * 2) % 256, (y * 2) % 256, (x + y) % 256], axis=-1).astype(np.uint8)
    return Image.fromarray(arr)


class _SwitchableTransforms(TransformLibrary):
    """Fails every geometric call once ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    def apply_geometric(self, src, op, params=None):
        if self.failing:
            raise TransformError("simulierter Fehler")
        return super().apply_geometric(src, op, params)


class HistoryEngineTestBase(unittest.TestCase):
    size = (100, 100)

    def setUp(self) -> None:
        self.ledger = BufferLedger()
        self.image = _gradient_image(self.size)
        self.transforms = _SwitchableTransforms()
        self.engine = HistoryEngine(self.transforms)
        self.engine.load_image(ImageBuffer.from_image(self.image, self.ledger))
        # independent reference buffers, not tracked by the ledger
        self.reference = TransformLibrary()
        self.base = ImageBuffer.from_image(self.image)

    def tearDown(self) -> None:
        self.engine.close()
        self.assertEqual(self.ledger.live, 0)
        self.base.release()

    def assertSameBuffer(self, actual: ImageBuffer, expected: ImageBuffer) -> None:
        self.assertEqual(actual.mode, expected.mode)
        self.assertEqual(actual.size, expected.size)
        self.assertEqual(actual.tobytes(), expected.tobytes())

    def assertInvariants(self) -> None:
        entries = self.engine.entries
        operations = self.engine.current_operations()
        self.assertEqual(len(entries), len(operations) + 1)
        self.assertTrue(0 <= self.engine.cursor < len(entries))
        self.assertEqual(entries[0].operations_so_far, ())
        for index, entry in enumerate(entries):
            self.assertEqual(entry.operations_so_far, operations[:index])
        buffers = [entry.buffer for entry in entries] + [self.engine.base_buffer()]
        self.assertEqual(len({id(buffer) for buffer in buffers}), len(buffers))
        self.assertEqual(self.ledger.live, len(entries) + 1)

    def color(self, mode, params=None) -> ImageBuffer:
        return self.reference.apply_color(self.base, mode, params)


class LoadAndResetTests(HistoryEngineTestBase):
    def test_load_creates_original_entry(self) -> None:
        entries = self.engine.entries
        self.assertEqual(len(entries), 1)
        self.assertEqual(self.engine.cursor, 0)
        self.assertEqual(entries[0].color_mode, ColorMode.ORIGINAL)
        self.assertIsNot(entries[0].buffer, self.engine.base_buffer())
        self.assertSameBuffer(self.engine.current_buffer(), self.base)
        self.assertFalse(self.engine.can_undo())
        self.assertFalse(self.engine.can_redo())
        self.assertInvariants()

    def test_load_replaces_previous_session(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        old_buffers = [entry.buffer for entry in self.engine.entries] + [self.engine.base_buffer()]

        self.engine.load_image(ImageBuffer.from_image(_gradient_image((40, 20)), self.ledger))

        self.assertTrue(all(buffer.released for buffer in old_buffers))
        self.assertEqual(self.engine.current_operations(), ())
        self.assertEqual(self.engine.current_buffer().size, (40, 20))
        self.assertInvariants()

    def test_load_rejects_buffer_already_in_history(self) -> None:
        with self.assertRaises(InvalidStateError):
            self.engine.load_image(self.engine.current_buffer())
        self.assertInvariants()

    def test_reset_twice_leaves_engine_empty(self) -> None:
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        self.engine.reset()
        self.engine.reset()

        self.assertEqual(self.ledger.live, 0)
        self.assertEqual(self.engine.cursor, -1)
        self.assertEqual(self.engine.entries, ())
        self.assertEqual(self.engine.current_operations(), ())
        self.assertIsNone(self.engine.current_buffer())
        self.assertIsNone(self.engine.base_buffer())
        self.assertFalse(self.engine.is_loaded())
        self.assertFalse(self.engine.can_undo())
        self.assertFalse(self.engine.can_redo())
        self.assertEqual(self.engine.current_color_mode(), ColorMode.ORIGINAL)

    def test_load_after_reset(self) -> None:
        self.engine.reset()
        self.engine.load_image(ImageBuffer.from_image(self.image, self.ledger))
        self.assertTrue(self.engine.is_loaded())
        self.assertInvariants()

    def test_context_manager_releases_everything(self) -> None:
        ledger = BufferLedger()
        with HistoryEngine() as engine:
            engine.load_image(ImageBuffer.from_image(self.image, ledger))
            engine.apply_color(ColorMode.HSV)
            self.assertEqual(ledger.live, 3)
        self.assertEqual(ledger.live, 0)


class ApplyTests(HistoryEngineTestBase):
    def test_invariants_hold_after_every_call(self) -> None:
        steps = [
            lambda: self.engine.apply_color(ColorMode.GRAYSCALE),
            lambda: self.engine.apply_geometric(GeometricOp.FLIP_HORIZONTAL),
            lambda: self.engine.undo(),
            lambda: self.engine.apply_geometric(GeometricOp.CROP_CENTER),
            lambda: self.engine.apply_color(ColorMode.BINARY, BinaryParams(30)),
            lambda: self.engine.jump_to(1),
            lambda: self.engine.redo(),
            lambda: self.engine.delete_operation(0),
            lambda: self.engine.apply_geometric(GeometricOp.RESIZE, ResizeParams(64, 32)),
            lambda: self.engine.undo(),
            lambda: self.engine.undo(),
            lambda: self.engine.apply_color(ColorMode.HSV),
        ]
        for step in steps:
            step()
            self.assertInvariants()

    def test_color_operations_replace_instead_of_compose(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_color(ColorMode.HSV)

        expected = self.color(ColorMode.HSV)
        self.assertSameBuffer(self.engine.current_buffer(), expected)
        expected.release()

    def test_color_operation_ignores_geometric_state(self) -> None:
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        self.engine.apply_color(ColorMode.GRAYSCALE)

        expected = self.color(ColorMode.GRAYSCALE)
        self.assertSameBuffer(self.engine.current_buffer(), expected)
        expected.release()

    def test_geometric_operation_uses_buffer_at_cursor(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.FLIP_VERTICAL)

        gray = self.color(ColorMode.GRAYSCALE)
        expected = self.reference.apply_geometric(gray, GeometricOp.FLIP_VERTICAL)
        self.assertSameBuffer(self.engine.current_buffer(), expected)
        self.assertEqual(self.engine.entries[2].color_mode, ColorMode.GRAYSCALE)
        gray.release()
        expected.release()

    def test_apply_returns_logged_operation(self) -> None:
        operation = self.engine.apply_geometric(GeometricOp.ROTATE_180)
        self.assertEqual(self.engine.current_operations(), (operation,))
        self.assertEqual(operation.name, "Rotate 180°")

    def test_default_parameters_are_recorded(self) -> None:
        binary = self.engine.apply_color(ColorMode.BINARY)
        resize = self.engine.apply_geometric(GeometricOp.RESIZE)

        self.assertEqual(binary.params, BinaryParams(120))
        self.assertEqual(resize.params, ResizeParams(300, 300))
        self.assertEqual(resize.name, "Resize 300×300")
        self.assertEqual(self.engine.current_buffer().size, (300, 300))

    def test_new_operation_after_undo_discards_redo(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        discarded = self.engine.entries[2].buffer
        self.engine.undo()
        self.assertTrue(self.engine.can_redo())

        self.engine.apply_geometric(GeometricOp.FLIP_HORIZONTAL)

        self.assertFalse(self.engine.can_redo())
        self.assertTrue(discarded.released)
        self.assertEqual(
            [op.name for op in self.engine.current_operations()], ["Grayscale", "Flip H"]
        )
        self.assertInvariants()

    def test_geometric_after_undo_applies_to_earlier_state(self) -> None:
        self.image = _gradient_image((120, 80))
        self.engine.load_image(ImageBuffer.from_image(self.image, self.ledger))
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        self.assertEqual(self.engine.current_buffer().size, (80, 120))

        self.engine.undo()
        self.engine.apply_geometric(GeometricOp.FLIP_HORIZONTAL)

        self.assertEqual(self.engine.current_buffer().size, (120, 80))
        self.assertInvariants()


class NavigationTests(HistoryEngineTestBase):
    def setUp(self) -> None:
        super().setUp()
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        self.engine.apply_color(ColorMode.BINARY, BinaryParams(80))

    def test_undo_redo_restores_buffer(self) -> None:
        for cursor in (3, 2, 1):
            self.engine.jump_to(cursor)
            before = self.engine.current_buffer().tobytes()
            self.assertTrue(self.engine.undo())
            self.assertTrue(self.engine.redo())
            self.assertEqual(self.engine.current_buffer().tobytes(), before)
            self.assertEqual(self.engine.cursor, cursor)

    def test_undo_and_redo_stop_at_bounds(self) -> None:
        self.assertFalse(self.engine.redo())
        self.engine.jump_to(0)
        self.assertFalse(self.engine.undo())
        self.assertEqual(self.engine.cursor, 0)

    def test_navigation_keeps_full_log(self) -> None:
        operations = self.engine.current_operations()
        live = self.ledger.live
        self.engine.undo()
        self.engine.jump_to(0)
        self.engine.redo()
        self.assertEqual(self.engine.current_operations(), operations)
        self.assertEqual(self.ledger.live, live)

    def test_jump_out_of_range_is_rejected(self) -> None:
        self.engine.jump_to(2)
        for index in (-1, 4, 100):
            with self.assertRaises(IndexOutOfRangeError):
                self.engine.jump_to(index)
        self.assertEqual(self.engine.cursor, 2)

    def test_index_error_is_also_builtin_index_error(self) -> None:
        with self.assertRaises(IndexError):
            self.engine.jump_to(10)

    def test_color_mode_follows_cursor(self) -> None:
        self.assertEqual(self.engine.current_color_mode(), ColorMode.BINARY)
        self.engine.undo()
        self.assertEqual(self.engine.current_color_mode(), ColorMode.GRAYSCALE)
        self.engine.jump_to(0)
        self.assertEqual(self.engine.current_color_mode(), ColorMode.ORIGINAL)


class ScenarioTests(HistoryEngineTestBase):
    def setUp(self) -> None:
        super().setUp()
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        self.engine.apply_color(ColorMode.BINARY, BinaryParams(80))

    def test_grayscale_rotate_binary(self) -> None:
        entries = self.engine.entries
        self.assertEqual(len(self.engine.current_operations()), 3)
        self.assertEqual(len(entries), 4)
        current = self.engine.current_buffer()
        self.assertEqual(current.size, (100, 100))
        self.assertEqual(current.channels, 1)
        self.assertTrue(set(np.unique(np.asarray(current.image))) <= {0, 255})
        self.assertEqual(entries[1].color_mode, ColorMode.GRAYSCALE)
        self.assertEqual(entries[2].color_mode, ColorMode.GRAYSCALE)
        self.assertEqual(entries[3].color_mode, ColorMode.BINARY)
        self.assertInvariants()

    def test_binary_is_thresholded_from_base(self) -> None:
        expected = self.color(ColorMode.BINARY, BinaryParams(80))
        self.assertSameBuffer(self.engine.current_buffer(), expected)
        expected.release()

    def test_double_undo_shows_grayscale_state(self) -> None:
        self.engine.undo()
        self.engine.undo()

        self.assertEqual(self.engine.cursor, 1)
        expected = self.color(ColorMode.GRAYSCALE)
        self.assertSameBuffer(self.engine.current_buffer(), expected)
        expected.release()

    def test_delete_first_operation_rebuilds(self) -> None:
        old_buffers = [entry.buffer for entry in self.engine.entries]

        removed = self.engine.delete_operation(0)

        self.assertEqual(removed.name, "Grayscale")
        self.assertTrue(all(buffer.released for buffer in old_buffers))
        self.assertEqual(
            [op.name for op in self.engine.current_operations()], ["Rotate 90°", "Binary"]
        )
        entries = self.engine.entries
        self.assertEqual(len(entries), 3)
        self.assertEqual(self.engine.cursor, 2)
        self.assertEqual(entries[1].color_mode, ColorMode.ORIGINAL)
        self.assertEqual(entries[2].color_mode, ColorMode.BINARY)

        rotated = self.reference.apply_geometric(self.base, GeometricOp.ROTATE_90)
        self.assertSameBuffer(entries[1].buffer, rotated)
        expected = self.color(ColorMode.BINARY, BinaryParams(80))
        self.assertSameBuffer(entries[2].buffer, expected)
        rotated.release()
        expected.release()
        self.assertInvariants()

    def test_resize_with_zero_width_is_rejected(self) -> None:
        entries = self.engine.entries
        cursor = self.engine.cursor
        with self.assertRaises(InvalidParameterError):
            self.engine.apply_geometric(GeometricOp.RESIZE, ResizeParams(0, 50))
        with self.assertRaises(InvalidParameterError):
            self.engine.apply_geometric(GeometricOp.RESIZE, BinaryParams(50))
        self.assertEqual(self.engine.entries, entries)
        self.assertEqual(self.engine.cursor, cursor)
        self.assertInvariants()


class DeleteOperationTests(HistoryEngineTestBase):
    def _replay_by_hand(self, operations) -> list[ImageBuffer]:
        buffers = [self.base.clone()]
        for operation in operations:
            if operation.is_color:
                buffers.append(
                    self.reference.apply_color(self.base, operation.color_mode, operation.params)
                )
            else:
                buffers.append(
                    self.reference.apply_geometric(buffers[-1], operation.geometric_op, operation.params)
                )
        return buffers

    def test_rebuild_matches_manual_replay(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        self.engine.apply_geometric(GeometricOp.FLIP_HORIZONTAL)
        self.engine.apply_color(ColorMode.HSV)
        self.engine.apply_geometric(GeometricOp.CROP_CENTER)
        self.engine.apply_geometric(GeometricOp.RESIZE, ResizeParams(50, 40))
        operations = self.engine.current_operations()

        self.engine.delete_operation(2)

        reduced = operations[:2] + operations[3:]
        self.assertEqual(self.engine.current_operations(), reduced)
        expected = self._replay_by_hand(reduced)
        for entry, buffer in zip(self.engine.entries, expected):
            self.assertSameBuffer(entry.buffer, buffer)
        for buffer in expected:
            buffer.release()
        self.assertInvariants()

    def test_delete_keeps_operation_identity(self) -> None:
        first = self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.ROTATE_180)
        last = self.engine.apply_geometric(GeometricOp.FLIP_VERTICAL)

        self.engine.delete_operation(1)

        self.assertEqual(self.engine.current_operations(), (first, last))

    def test_delete_while_viewing_past_state_jumps_to_end(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        self.engine.apply_geometric(GeometricOp.FLIP_HORIZONTAL)
        self.engine.jump_to(1)

        self.engine.delete_operation(1)

        self.assertEqual(self.engine.cursor, 2)
        self.assertFalse(self.engine.can_redo())

    def test_delete_only_operation_leaves_base_state(self) -> None:
        self.engine.apply_geometric(GeometricOp.CROP_CENTER)
        self.engine.delete_operation(0)

        self.assertEqual(len(self.engine.entries), 1)
        self.assertEqual(self.engine.cursor, 0)
        self.assertSameBuffer(self.engine.current_buffer(), self.base)
        self.assertTrue(self.engine.is_loaded())
        self.assertInvariants()

    def test_delete_out_of_range_is_rejected(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        entries = self.engine.entries
        for index in (-1, 1, 5):
            with self.assertRaises(IndexOutOfRangeError):
                self.engine.delete_operation(index)
        self.assertEqual(self.engine.entries, entries)
        self.assertInvariants()


class ErrorHandlingTests(HistoryEngineTestBase):
    def test_edits_on_empty_engine_are_rejected(self) -> None:
        self.engine.reset()
        with self.assertRaises(InvalidStateError):
            self.engine.apply_color(ColorMode.GRAYSCALE)
        with self.assertRaises(InvalidStateError):
            self.engine.apply_geometric(GeometricOp.ROTATE_90)
        with self.assertRaises(IndexOutOfRangeError):
            self.engine.delete_operation(0)
        self.assertFalse(self.engine.is_loaded())
        self.assertEqual(self.engine.cursor, -1)

    def test_invalid_parameters_leave_state_unchanged(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        live = self.ledger.live
        with self.assertRaises(InvalidParameterError):
            self.engine.apply_color(ColorMode.GRAYSCALE, BinaryParams(10))
        with self.assertRaises(InvalidParameterError):
            self.engine.apply_color("sepia")
        with self.assertRaises(InvalidParameterError):
            self.engine.apply_geometric(GeometricOp.ROTATE_90, ResizeParams(10, 10))
        self.assertEqual(self.ledger.live, live)
        self.assertEqual(len(self.engine.current_operations()), 1)

    def test_transform_failure_commits_nothing(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.undo()
        entries = self.engine.entries
        operations = self.engine.current_operations()
        live = self.ledger.live

        self.transforms.failing = True
        with self.assertRaises(TransformFailureError):
            self.engine.apply_geometric(GeometricOp.ROTATE_90)

        self.assertEqual(self.engine.entries, entries)
        self.assertEqual(self.engine.current_operations(), operations)
        self.assertEqual(self.engine.cursor, 0)
        self.assertTrue(self.engine.can_redo())
        self.assertEqual(self.ledger.live, live)

    def test_failed_rebuild_keeps_previous_chain(self) -> None:
        self.engine.apply_color(ColorMode.GRAYSCALE)
        self.engine.apply_geometric(GeometricOp.ROTATE_90)
        entries = self.engine.entries
        live = self.ledger.live

        self.transforms.failing = True
        with self.assertRaises(TransformFailureError):
            self.engine.delete_operation(0)

        self.assertEqual(self.engine.entries, entries)
        self.assertFalse(any(entry.buffer.released for entry in entries))
        self.assertEqual(self.ledger.live, live)
        self.transforms.failing = False
        self.assertInvariants()

    def test_errors_share_history_base_class(self) -> None:
        for error in (InvalidStateError, TransformFailureError, IndexOutOfRangeError):
            self.assertTrue(issubclass(error, HistoryError))


class ConcurrencyTests(HistoryEngineTestBase):
    size = (32, 24)
    workers = 6
    calls_per_worker = 60

    def _worker(self, seed: int, failures: list) -> None:
        rng = random.Random(seed)
        geometric = (GeometricOp.ROTATE_90, GeometricOp.FLIP_HORIZONTAL, GeometricOp.FLIP_VERTICAL)
        for _ in range(self.calls_per_worker):
            choice = rng.randrange(5)
            try:
                if choice == 0:
                    self.engine.apply_color(rng.choice([ColorMode.GRAYSCALE, ColorMode.HSV, ColorMode.BINARY]))
                elif choice == 1:
                    if rng.random() < 0.2:
                        self.engine.apply_geometric(GeometricOp.RESIZE, ResizeParams(16, 12))
                    else:
                        self.engine.apply_geometric(rng.choice(geometric))
                elif choice == 2:
                    self.engine.undo()
                elif choice == 3:
                    self.engine.delete_operation(rng.randrange(max(1, len(self.engine.current_operations()))))
                else:
                    self.engine.jump_to(rng.randrange(len(self.engine.entries)))
            except IndexOutOfRangeError:
                # another worker shrank the history between read and call
                continue
            except Exception as exc:  # collected and asserted in the main thread
                failures.append(exc)

    def test_parallel_mutations_keep_history_consistent(self) -> None:
        failures: list = []
        threads = [
            threading.Thread(target=self._worker, args=(seed, failures)) for seed in range(self.workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(failures, [])
        self.assertInvariants()
        self.engine.close()
        self.assertEqual(self.ledger.live, 0)
        self.assertFalse(self.engine.is_loaded())


class ListenerTests(unittest.TestCase):
    def test_listener_notified_on_changes(self) -> None:
        calls: list[int] = []
        engine = HistoryEngine(on_change=lambda e: calls.append(e.cursor))
        engine.load_image(ImageBuffer.from_image(_gradient_image((20, 20))))
        engine.apply_color(ColorMode.GRAYSCALE)
        engine.undo()
        engine.undo()  # no-op, no notification
        engine.reset()

        self.assertEqual(calls, [0, 1, 0, -1])


if __name__ == "__main__":
    unittest.main()
