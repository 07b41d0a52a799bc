from __future__ import annotations

import logging
from typing import Optional

from PySide6.QtGui import QImage
from PySide6.QtMultimedia import QCamera, QImageCapture, QMediaCaptureSession, QMediaDevices
from PySide6.QtMultimediaWidgets import QVideoWidget
from PySide6.QtWidgets import QDialog, QDialogButtonBox, QLabel, QPushButton, QVBoxLayout
import qtawesome as qta


class CameraDialog(QDialog):
    """
    Live preview of the default camera with a single capture button.

    The dialog accepts as soon as one frame has been captured; the camera is
    stopped on capture and whenever the dialog closes.
    """

    def __init__(self, parent=None) -> None:
        super().__init__(parent)
        self.logger = logging.getLogger(self.__class__.__name__)
        self.setWindowTitle("Kamera")
        self._frame: Optional[QImage] = None
        self._camera: Optional[QCamera] = None

        self._preview = QVideoWidget(self)
        self._preview.setMinimumSize(480, 360)
        self._status = QLabel(self)
        self._capture_button = QPushButton(qta.icon("mdi6.camera"), "Aufnehmen", self)
        self._capture_button.setEnabled(False)
        self._capture_button.clicked.connect(self._capture)
        buttons = QDialogButtonBox(QDialogButtonBox.Cancel, parent=self)
        buttons.rejected.connect(self.reject)

        layout = QVBoxLayout(self)
        layout.addWidget(self._preview)
        layout.addWidget(self._status)
        layout.addWidget(self._capture_button)
        layout.addWidget(buttons)

        device = QMediaDevices.defaultVideoInput()
        if device.isNull():
            self._status.setText("Keine Kamera gefunden.")
            return

        self._camera = QCamera(device, self)
        self._image_capture = QImageCapture(self)
        self._session = QMediaCaptureSession(self)
        self._session.setCamera(self._camera)
        self._session.setImageCapture(self._image_capture)
        self._session.setVideoOutput(self._preview)

        self._camera.errorOccurred.connect(self._on_camera_error)
        self._image_capture.readyForCaptureChanged.connect(self._capture_button.setEnabled)
        self._image_capture.imageCaptured.connect(self._on_image_captured)
        self._image_capture.errorOccurred.connect(self._on_capture_error)
        self._status.setText(device.description())
        self._camera.start()

    def captured_frame(self) -> Optional[QImage]:
        return self._frame

    def done(self, result: int) -> None:
        self._stop_camera()
        super().done(result)

    def _capture(self) -> None:
        self._capture_button.setEnabled(False)
        self._image_capture.capture()

    def _on_image_captured(self, _request_id: int, preview: QImage) -> None:
        self._frame = preview.copy()
        self.logger.info("Kamerabild aufgenommen: %sx%s", preview.width(), preview.height())
        self.accept()

    def _on_camera_error(self, _error, message: str) -> None:
        self.logger.warning("Kamerafehler: %s", message)
        self._status.setText(message)
        self._capture_button.setEnabled(False)

    def _on_capture_error(self, _request_id: int, _error, message: str) -> None:
        self.logger.warning("Aufnahme fehlgeschlagen: %s", message)
        self._status.setText(message)
        self._capture_button.setEnabled(self._image_capture.isReadyForCapture())

    def _stop_camera(self) -> None:
        if self._camera is not None and self._camera.isActive():
            self._camera.stop()
            self.logger.debug("Kamera gestoppt")
