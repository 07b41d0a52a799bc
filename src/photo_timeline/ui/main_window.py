from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QAction, QDragEnterEvent, QDropEvent
from PySide6.QtWidgets import (
    QFileDialog,
    QGridLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QSlider,
    QStatusBar,
    QVBoxLayout,
    QWidget,
)
import qtawesome as qta

from ..core.export_service import ExportConfig, ExportService, ExportServiceError
from ..core.history_engine import HistoryEngine, HistoryError
from ..core.image_io import ImageLoadError, buffer_from_qimage, decode_image, is_supported
from ..core.operations import BinaryParams, ColorMode, GeometricOp, InvalidParameterError, ResizeParams
from ..core.settings import AppSettings
from ..core.transforms import TransformLibrary
from .components.history_timeline import HistoryTimeline
from .dialogs.camera_dialog import CameraDialog
from .dialogs.resize_dialog import ResizeDialog
from .views.image_canvas import ImageCanvas

COLOR_BUTTONS = (
    (ColorMode.ORIGINAL, "Original", "mdi6.image"),
    (ColorMode.GRAYSCALE, "Graustufen", "mdi6.invert-colors"),
    (ColorMode.HSV, "HSV", "mdi6.palette"),
)

GEOMETRIC_BUTTONS = (
    (GeometricOp.ROTATE_90, "90° drehen", "mdi6.rotate-right"),
    (GeometricOp.ROTATE_180, "180° drehen", "mdi6.rotate-3d-variant"),
    (GeometricOp.FLIP_HORIZONTAL, "Horizontal spiegeln", "mdi6.flip-horizontal"),
    (GeometricOp.FLIP_VERTICAL, "Vertikal spiegeln", "mdi6.flip-vertical"),
    (GeometricOp.CROP_CENTER, "Mitte zuschneiden", "mdi6.crop"),
)


class MainWindow(QMainWindow):
    """
    Presentation adapter around HistoryEngine: original and processed canvas,
    operation controls and the history timeline.
    """

    def __init__(self, settings: AppSettings, initial_path: Path | None = None) -> None:
        super().__init__()
        self.logger = logging.getLogger(self.__class__.__name__)
        self.settings = settings
        self._initial_path = initial_path
        self.engine = HistoryEngine(TransformLibrary(settings.transforms))
        self.export_service = ExportService(
            ExportConfig(format=settings.export.format, directory=settings.export.directory)
        )
        self.current_image_path: Path | None = None
        self._operation_buttons: list[QPushButton] = []

        self.setWindowTitle("Photo Timeline")
        self.resize(1280, 820)
        self.setAcceptDrops(True)

        self._create_actions()
        self._create_menus()
        self._create_ui()
        self.engine.set_listener(lambda _engine: self._refresh())
        self._refresh()
        if self._initial_path:
            QTimer.singleShot(0, lambda: self._open_image(self._initial_path))

    # --- UI creation helpers -------------------------------------------------
    def _create_actions(self) -> None:
        self.open_action = QAction("Bild öffnen …", self)
        self.open_action.setShortcut("Ctrl+O")
        self.open_action.triggered.connect(self.open_image_dialog)

        self.camera_action = QAction("Kamera …", self)
        self.camera_action.setShortcut("Ctrl+K")
        self.camera_action.triggered.connect(self.capture_from_camera)

        self.save_action = QAction("Ergebnis speichern", self)
        self.save_action.setShortcut("Ctrl+S")
        self.save_action.triggered.connect(self.save_result)

        self.undo_action = QAction("Rückgängig", self)
        self.undo_action.setShortcut("Ctrl+Z")
        self.undo_action.triggered.connect(self.undo_change)

        self.redo_action = QAction("Wiederholen", self)
        self.redo_action.setShortcut("Ctrl+Shift+Z")
        self.redo_action.triggered.connect(self.redo_change)

        self.reset_action = QAction("Zurücksetzen", self)
        self.reset_action.setShortcut("Ctrl+R")
        self.reset_action.triggered.connect(self.reset_session)

        self.exit_action = QAction("Beenden", self)
        self.exit_action.setShortcut("Ctrl+Q")
        self.exit_action.triggered.connect(self.close)

    def _create_menus(self) -> None:
        file_menu = self.menuBar().addMenu("&Datei")
        file_menu.addAction(self.open_action)
        file_menu.addAction(self.camera_action)
        file_menu.addAction(self.save_action)
        file_menu.addSeparator()
        file_menu.addAction(self.exit_action)

        edit_menu = self.menuBar().addMenu("&Bearbeiten")
        edit_menu.addAction(self.undo_action)
        edit_menu.addAction(self.redo_action)
        edit_menu.addSeparator()
        edit_menu.addAction(self.reset_action)

    def _create_ui(self) -> None:
        container = QWidget()
        root_layout = QHBoxLayout(container)
        root_layout.setContentsMargins(8, 8, 8, 8)
        root_layout.setSpacing(12)

        canvas_layout = QHBoxLayout()
        self.original_canvas = ImageCanvas("Kein Bild geladen")
        self.processed_canvas = ImageCanvas("Ergebnis")
        canvas_layout.addWidget(self._titled("Original", self.original_canvas))
        canvas_layout.addWidget(self._titled("Bearbeitet", self.processed_canvas))
        root_layout.addLayout(canvas_layout, stretch=3)

        side = QVBoxLayout()
        side.addWidget(self._create_file_controls())
        side.addWidget(self._create_color_controls())
        side.addWidget(self._create_geometric_controls())
        self.timeline = HistoryTimeline()
        self.timeline.jump_requested.connect(self.jump_to_state)
        self.timeline.delete_requested.connect(self.delete_operation)
        side.addWidget(self._titled("Verlauf", self.timeline), stretch=1)
        root_layout.addLayout(side, stretch=1)

        self.status_bar = QStatusBar()
        self.setStatusBar(self.status_bar)
        self.setCentralWidget(container)

    def _titled(self, title: str, widget: QWidget) -> QGroupBox:
        box = QGroupBox(title)
        layout = QVBoxLayout(box)
        layout.addWidget(widget)
        return box

    def _button(self, text: str, icon_name: str, slot) -> QPushButton:
        button = QPushButton(text)
        button.setIcon(qta.icon(icon_name))
        button.clicked.connect(slot)
        return button

    def _create_file_controls(self) -> QGroupBox:
        box = QGroupBox("Datei")
        layout = QGridLayout(box)
        layout.addWidget(self._button("Öffnen", "mdi6.folder-open", self.open_image_dialog), 0, 0)
        layout.addWidget(self._button("Kamera", "mdi6.camera", self.capture_from_camera), 0, 1)
        self.save_btn = self._button("Speichern", "mdi6.content-save", self.save_result)
        layout.addWidget(self.save_btn, 0, 2)
        self.undo_btn = self._button("Rückgängig", "mdi6.undo", self.undo_change)
        self.redo_btn = self._button("Wiederholen", "mdi6.redo", self.redo_change)
        self.reset_btn = self._button("Zurücksetzen", "mdi6.image-refresh", self.reset_session)
        layout.addWidget(self.undo_btn, 1, 0)
        layout.addWidget(self.redo_btn, 1, 1)
        layout.addWidget(self.reset_btn, 1, 2)
        return box

    def _create_color_controls(self) -> QGroupBox:
        box = QGroupBox("Farbe")
        layout = QGridLayout(box)
        for column, (mode, text, icon_name) in enumerate(COLOR_BUTTONS):
            button = self._button(text, icon_name, lambda _=False, m=mode: self.apply_color(m))
            self._operation_buttons.append(button)
            layout.addWidget(button, 0, column)

        self.threshold_label = QLabel()
        self.threshold_slider = QSlider(Qt.Horizontal)
        self.threshold_slider.setRange(0, 255)
        self.threshold_slider.setValue(self.settings.transforms.binary_threshold)
        self.threshold_slider.valueChanged.connect(self._update_threshold_label)
        self._update_threshold_label(self.threshold_slider.value())
        binary_btn = self._button("Binär", "mdi6.contrast-box", self._apply_binary)
        self._operation_buttons.append(binary_btn)
        layout.addWidget(self.threshold_label, 1, 0)
        layout.addWidget(self.threshold_slider, 1, 1)
        layout.addWidget(binary_btn, 1, 2)
        return box

    def _create_geometric_controls(self) -> QGroupBox:
        box = QGroupBox("Geometrie")
        layout = QGridLayout(box)
        for index, (op, text, icon_name) in enumerate(GEOMETRIC_BUTTONS):
            button = self._button(text, icon_name, lambda _=False, o=op: self.apply_geometric(o))
            self._operation_buttons.append(button)
            layout.addWidget(button, index // 2, index % 2)
        resize_btn = self._button("Größe ändern …", "mdi6.resize", self._resize_dialog)
        self._operation_buttons.append(resize_btn)
        layout.addWidget(resize_btn, len(GEOMETRIC_BUTTONS) // 2, len(GEOMETRIC_BUTTONS) % 2)
        return box

    def _update_threshold_label(self, value: int) -> None:
        self.threshold_label.setText(f"Schwelle: {value}")

    # --- File handling -------------------------------------------------------
    def open_image_dialog(self) -> None:
        file_path, _ = QFileDialog.getOpenFileName(
            self,
            "Bild öffnen",
            str(self.current_image_path.parent if self.current_image_path else Path.home()),
            "Bilder (*.png *.jpg *.jpeg *.webp *.bmp *.tiff)",
        )
        if file_path:
            self._open_image(Path(file_path))

    def _open_image(self, path: Path) -> None:
        try:
            buffer = decode_image(path)
        except ImageLoadError as exc:
            self.logger.warning("Laden fehlgeschlagen: %s", exc)
            self._show_error(str(exc))
            return
        self.engine.load_image(buffer)
        self.current_image_path = path
        self.logger.info("Bild geladen: %s", path)
        self.status_bar.showMessage(f"Aktuelles Bild: {path.name}", 5000)

    def capture_from_camera(self) -> None:
        dialog = CameraDialog(self)
        if not dialog.exec():
            return
        try:
            buffer = buffer_from_qimage(dialog.captured_frame())
        except ImageLoadError as exc:
            self.logger.warning("Kameraaufnahme fehlgeschlagen: %s", exc)
            self._show_error(str(exc))
            return
        self.engine.load_image(buffer)
        self.current_image_path = None
        self.logger.info("Kamerabild geladen (%sx%s)", buffer.width, buffer.height)
        self.status_bar.showMessage("Kamerabild geladen", 5000)

    def save_result(self) -> None:
        buffer = self.engine.current_buffer()
        if buffer is None:
            self._show_error("Kein Bild geladen.")
            return
        target_dir = self.export_service.config.directory or (
            self.current_image_path.parent if self.current_image_path else Path.home()
        )
        try:
            path = self.export_service.export(buffer, self.engine.current_operations(), target_dir)
        except ExportServiceError as exc:
            self.logger.exception("Fehler beim Speichern")
            self._show_error(str(exc))
            return
        self.status_bar.showMessage(f"Gespeichert: {path}", 5000)

    # --- Drag & drop events --------------------------------------------------
    def dragEnterEvent(self, event: QDragEnterEvent) -> None:
        if self._has_supported_file(event.mimeData().urls()):
            event.acceptProposedAction()
        else:
            event.ignore()

    def dropEvent(self, event: QDropEvent) -> None:
        for url in event.mimeData().urls():
            path = Path(url.toLocalFile())
            if is_supported(path):
                self._open_image(path)
                break

    def _has_supported_file(self, urls: Iterable) -> bool:
        return any(is_supported(Path(url.toLocalFile())) for url in urls)

    # --- Edits ---------------------------------------------------------------
    def apply_color(self, mode: ColorMode, params: BinaryParams | None = None) -> None:
        self._run_edit(lambda: self.engine.apply_color(mode, params))

    def _apply_binary(self) -> None:
        self.apply_color(ColorMode.BINARY, BinaryParams(self.threshold_slider.value()))

    def apply_geometric(self, op: GeometricOp, params: ResizeParams | None = None) -> None:
        self._run_edit(lambda: self.engine.apply_geometric(op, params))

    def _resize_dialog(self) -> None:
        current = self.engine.current_buffer()
        width, height = (
            (current.width, current.height)
            if current is not None
            else (self.settings.transforms.resize_width, self.settings.transforms.resize_height)
        )
        dialog = ResizeDialog(width, height, self)
        if dialog.exec() and dialog.selection:
            selection = dialog.selection
            self.apply_geometric(GeometricOp.RESIZE, ResizeParams(selection.width, selection.height))

    def delete_operation(self, index: int) -> None:
        self._run_edit(lambda: self.engine.delete_operation(index))

    def _run_edit(self, edit) -> None:
        try:
            operation = edit()
        except (HistoryError, InvalidParameterError) as exc:
            self.status_bar.showMessage(str(exc), 5000)
            return
        self.status_bar.showMessage(operation.name, 3000)

    # --- History controls ----------------------------------------------------
    def undo_change(self) -> None:
        if not self.engine.undo():
            self.status_bar.showMessage("Nichts zum Rückgängig machen.", 4000)

    def redo_change(self) -> None:
        if not self.engine.redo():
            self.status_bar.showMessage("Nichts zum Wiederholen.", 4000)

    def jump_to_state(self, index: int) -> None:
        try:
            self.engine.jump_to(index)
        except HistoryError as exc:
            self.status_bar.showMessage(str(exc), 4000)

    def reset_session(self) -> None:
        if self.engine.current_operations():
            confirm = QMessageBox.question(
                self,
                "Zurücksetzen?",
                "Bild und Verlauf werden verworfen. Fortfahren?",
                QMessageBox.Yes | QMessageBox.No,
                QMessageBox.No,
            )
            if confirm != QMessageBox.Yes:
                return
        self.engine.reset()
        self.current_image_path = None
        self.status_bar.showMessage("Zurückgesetzt.", 4000)

    def _refresh(self) -> None:
        loaded = self.engine.is_loaded()
        self.original_canvas.display_buffer(self.engine.base_buffer())
        self.processed_canvas.display_buffer(self.engine.current_buffer())
        self.timeline.set_history(self.engine.current_operations(), self.engine.cursor)

        can_undo = self.engine.can_undo()
        can_redo = self.engine.can_redo()
        self.undo_action.setEnabled(can_undo)
        self.redo_action.setEnabled(can_redo)
        self.undo_btn.setEnabled(can_undo)
        self.redo_btn.setEnabled(can_redo)
        for widget in (self.reset_action, self.save_action, self.reset_btn, self.save_btn):
            widget.setEnabled(loaded)
        for button in self._operation_buttons:
            button.setEnabled(loaded)
        mode = self.engine.current_color_mode()
        self.setWindowTitle(f"Photo Timeline – {mode.value}" if loaded else "Photo Timeline")

    def _show_error(self, message: str) -> None:
        QMessageBox.critical(self, "Fehler", message)

    def closeEvent(self, event) -> None:
        self.engine.close()
        super().closeEvent(event)
