from __future__ import annotations
from PyQt5 import QtWidgets, QtGui, QtCore
import cv2
import numpy as np

def bgr_to_qimage(img_bgr: np.ndarray) -> QtGui.QImage:
    img_rgb = cv2.cvtColor(img_bgr, cv2.COLOR_BGR2RGB)
    h, w, ch = img_rgb.shape
    bytes_per_line = ch * w
    return QtGui.QImage(img_rgb.data, w, h, bytes_per_line, QtGui.QImage.Format_RGB888).copy()

class ImagePane(QtWidgets.QScrollArea):
    """Shows the rendered surface 1:1; zoom is already baked into the pixels."""
    def __init__(self, parent=None):
        super().__init__(parent)
        self._label = QtWidgets.QLabel()
        self._label.setAlignment(QtCore.Qt.AlignCenter)
        self._label.setText("No frame yet")
        self.setWidget(self._label)
        self.setWidgetResizable(True)
        self.setAlignment(QtCore.Qt.AlignCenter)
        self.setMinimumSize(320, 240)

    def set_frame(self, img_bgr: np.ndarray):
        pix = QtGui.QPixmap.fromImage(bgr_to_qimage(img_bgr))
        self._label.setPixmap(pix)
        self._label.setMinimumSize(pix.size())

    def clear_frame(self, text: str = "No frame yet"):
        self._label.clear()
        self._label.setMinimumSize(0, 0)
        self._label.setText(text)
