from __future__ import annotations

from typing import Sequence

from PySide6.QtCore import Qt, QTimer, Signal
from PySide6.QtGui import QAction, QBrush, QColor, QKeyEvent
from PySide6.QtWidgets import QListWidget, QListWidgetItem, QMenu
import qtawesome as qta

from ...core.operations import Operation


class HistoryTimeline(QListWidget):
    """
    Operation list. Row 0 is the original image, row k the state after operation k.

    Clicking a row jumps to that state; Delete or the context menu removes the
    operation behind it.
    """

    jump_requested = Signal(int)
    delete_requested = Signal(int)

    ACTIVE_COLOR = QColor("#2196F3")
    PAST_COLOR = QColor("#333333")
    FUTURE_COLOR = QColor("#9E9E9E")

    def __init__(self, parent=None) -> None:
        super().__init__(parent)
        self.setSelectionMode(QListWidget.SingleSelection)
        self.setContextMenuPolicy(Qt.CustomContextMenu)
        self.customContextMenuRequested.connect(self._show_context_menu)
        self.itemClicked.connect(self._on_item_clicked)
        self._syncing = False

    def set_history(self, operations: Sequence[Operation], cursor: int) -> None:
        self._syncing = True
        try:
            self.clear()
            if cursor < 0:
                return
            self._add_row("Original", 0, cursor, "mdi6.image-outline")
            for index, operation in enumerate(operations, start=1):
                icon = "mdi6.palette" if operation.is_color else "mdi6.rotate-right"
                label = f"{index}. {operation.name}  ({operation.created_at:%H:%M:%S})"
                self._add_row(label, index, cursor, icon)
            self.setCurrentRow(cursor)
        finally:
            self._syncing = False

    def _add_row(self, label: str, position: int, cursor: int, icon_name: str) -> None:
        item = QListWidgetItem(label)
        item.setData(Qt.UserRole, position)
        if position == cursor:
            color = self.ACTIVE_COLOR
        elif position < cursor:
            color = self.PAST_COLOR
        else:
            color = self.FUTURE_COLOR
        item.setForeground(QBrush(color))
        item.setIcon(qta.icon(icon_name, color=color.name()))
        self.addItem(item)

    def _on_item_clicked(self, item: QListWidgetItem) -> None:
        if self._syncing:
            return
        position = int(item.data(Qt.UserRole))
        # rebuilding the list inside its own click signal deletes the clicked item
        QTimer.singleShot(0, lambda: self.jump_requested.emit(position))

    def _show_context_menu(self, pos) -> None:
        item = self.itemAt(pos)
        if item is None:
            return
        position = int(item.data(Qt.UserRole))
        if position == 0:
            return
        menu = QMenu(self)
        delete_action = QAction(qta.icon("mdi6.delete"), "Operation entfernen", menu)
        delete_action.triggered.connect(lambda: self.delete_requested.emit(position - 1))
        menu.addAction(delete_action)
        menu.exec(self.mapToGlobal(pos))

    def keyPressEvent(self, event: QKeyEvent) -> None:
        if event.key() in (Qt.Key_Delete, Qt.Key_Backspace):
            item = self.currentItem()
            if item is not None and int(item.data(Qt.UserRole)) > 0:
                self.delete_requested.emit(int(item.data(Qt.UserRole)) - 1)
                return
        super().keyPressEvent(event)
