from __future__ import annotations

from dataclasses import dataclass

from PySide6.QtWidgets import QDialog, QDialogButtonBox, QFormLayout, QMessageBox, QSpinBox


@dataclass(frozen=True)
class ResizeSelection:
    width: int
    height: int


class ResizeDialog(QDialog):
    def __init__(self, width: int = 300, height: int = 300, parent=None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Größe ändern")
        self._width_input = QSpinBox()
        self._height_input = QSpinBox()
        for spin, value in ((self._width_input, width), (self._height_input, height)):
            spin.setRange(0, 10000)
            spin.setSuffix(" px")
            spin.setValue(value)

        layout = QFormLayout(self)
        layout.addRow("Breite", self._width_input)
        layout.addRow("Höhe", self._height_input)

        buttons = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._on_accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

        self.selection: ResizeSelection | None = None

    def _on_accept(self) -> None:
        width = self._width_input.value()
        height = self._height_input.value()
        if width <= 0 or height <= 0:
            QMessageBox.warning(self, "Ungültige Eingabe", "Breite und Höhe müssen > 0 sein.")
            return

        self.selection = ResizeSelection(width=width, height=height)
        self.accept()
