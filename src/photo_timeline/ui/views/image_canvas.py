from __future__ import annotations

from typing import Optional

from PySide6.QtCore import QRectF, Qt
from PySide6.QtGui import QPainter, QPalette, QPixmap
from PySide6.QtWidgets import QSizePolicy, QWidget
from PIL import ImageQt

from ...core.image_buffer import ImageBuffer


class ImageCanvas(QWidget):
    """
    Displays a buffer scaled to fit the widget, centered.
    """

    def __init__(self, placeholder: str = "", parent=None) -> None:
        super().__init__(parent)
        self.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Expanding)
        self.setObjectName("imageCanvas")
        self.setMinimumSize(240, 180)
        self._placeholder = placeholder
        self._pixmap: Optional[QPixmap] = None
        self._fit_scale: float = 1.0
        self._image_rect: QRectF = QRectF()

    def clear(self) -> None:
        self._pixmap = None
        self._image_rect = QRectF()
        self.update()

    def display_buffer(self, buffer: Optional[ImageBuffer]) -> None:
        """Copy the borrowed buffer into a pixmap; the buffer is not kept."""
        if buffer is None:
            self.clear()
            return
        image = buffer.to_display_image()
        try:
            self._pixmap = QPixmap.fromImage(ImageQt.ImageQt(image))
        finally:
            image.close()
        self._update_scaling()

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        palette = self.palette()
        painter.fillRect(self.rect(), palette.color(QPalette.Base))
        if not self._pixmap:
            if self._placeholder:
                painter.setPen(palette.color(QPalette.PlaceholderText))
                painter.drawText(self.rect(), Qt.AlignCenter, self._placeholder)
            return
        target = self._image_rect
        if target.isNull():
            return
        source = QRectF(0, 0, self._pixmap.width(), self._pixmap.height())
        painter.setRenderHint(QPainter.SmoothPixmapTransform, True)
        painter.drawPixmap(target, self._pixmap, source)

    def resizeEvent(self, event) -> None:
        super().resizeEvent(event)
        self._update_scaling()

    def _update_scaling(self) -> None:
        if not self._pixmap:
            self._fit_scale = 1.0
            self._image_rect = QRectF()
            self.update()
            return

        pixmap_w = self._pixmap.width()
        pixmap_h = self._pixmap.height()
        if pixmap_w <= 0 or pixmap_h <= 0:
            self._image_rect = QRectF()
            self.update()
            return

        avail_w = max(1, self.width())
        avail_h = max(1, self.height())
        # never upscale small images beyond 1:1
        self._fit_scale = min(1.0, avail_w / pixmap_w, avail_h / pixmap_h)
        scaled_w = pixmap_w * self._fit_scale
        scaled_h = pixmap_h * self._fit_scale
        offset_x = (avail_w - scaled_w) / 2
        offset_y = (avail_h - scaled_h) / 2
        self._image_rect = QRectF(offset_x, offset_y, scaled_w, scaled_h)
        self.update()
