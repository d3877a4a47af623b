from __future__ import annotations
import logging, threading
from dataclasses import replace
from pathlib import Path
from typing import List, Optional
import numpy as np
from PyQt5 import QtCore, QtGui, QtWidgets

from ..common.config import ViewerConfig
from ..pipeline.capture import save_snapshot
from ..pipeline.fetch import BoundedFetcher, make_session
from ..pipeline.loop import PollingLoop
from ..pipeline.rate import format_fps
from ..pipeline.recorder import VideoRecorder
from ..pipeline.sources import DetectionSource, FrameSource
from ..pipeline.types import RenderedFrame
from .widgets import ImagePane

log = logging.getLogger("gui")


class PollThread(QtCore.QThread):
    frame_ready = QtCore.pyqtSignal(np.ndarray, str, int)
    error = QtCore.pyqtSignal(str)

    def __init__(self, cfg: ViewerConfig, zoom: float):
        super().__init__()
        self.cfg = cfg
        self._zoom = float(zoom)
        self._stop = threading.Event()
        self.loop: Optional[PollingLoop] = None

    def set_zoom(self, zoom: float):
        self._zoom = float(zoom)

    def run(self):
        session = make_session(self.cfg.user_agent)
        frames = FrameSource(BoundedFetcher(self.cfg.image_url, self.cfg.image_timeout_ms, session))
        detections = DetectionSource(BoundedFetcher(self.cfg.bbox_url, self.cfg.bbox_timeout_ms, session))
        self.loop = PollingLoop(frames, detections,
                                zoom=lambda: self._zoom,
                                on_render=self._on_render,
                                idle_s=self.cfg.idle_ms / 1000.0,
                                stop_event=self._stop)
        log.info("Polling %s and %s", self.cfg.image_url, self.cfg.bbox_url)
        try:
            self.loop.run()
        except Exception as e:
            log.exception("Polling loop crashed")
            self.error.emit(f"{e.__class__.__name__}: {e}")
        finally:
            session.close()

    def _on_render(self, rendered: RenderedFrame):
        self.frame_ready.emit(rendered.image, format_fps(rendered.fps), len(rendered.batch.detections))

    def stop(self) -> bool:
        """Signals the loop and waits for it; False if it is still inside a fetch."""
        self._stop.set()
        # a fetch in flight ends at its own deadline
        return self.wait(int(self.cfg.image_timeout_ms + self.cfg.bbox_timeout_ms + 1000))


class MainWindow(QtWidgets.QWidget):
    def __init__(self, cfg: ViewerConfig):
        super().__init__()
        self.cfg = cfg
        self.setWindowTitle("Camera detections")

        self.urlEdit = QtWidgets.QLineEdit(cfg.base_url)
        self.runBtn = QtWidgets.QPushButton("Start")
        self.zoomSpin = QtWidgets.QDoubleSpinBox()
        self.zoomSpin.setRange(0.1, 8.0); self.zoomSpin.setDecimals(2); self.zoomSpin.setSingleStep(0.25)
        self.zoomSpin.setValue(cfg.zoom)

        camBox = QtWidgets.QGroupBox("Camera")
        cGrid = QtWidgets.QGridLayout(camBox); cGrid.setContentsMargins(8,8,8,8); cGrid.setHorizontalSpacing(8)
        cGrid.addWidget(QtWidgets.QLabel("URL"), 0, 0); cGrid.addWidget(self.urlEdit, 0, 1, 1, 3)
        cGrid.addWidget(QtWidgets.QLabel("Zoom"), 1, 0); cGrid.addWidget(self.zoomSpin, 1, 1)
        cGrid.addWidget(self.runBtn, 1, 3)

        self.labelEdit = QtWidgets.QLineEdit(cfg.label)
        self.saveDirEdit = QtWidgets.QLineEdit(cfg.save_dir)
        self.saveBtn = QtWidgets.QPushButton("Save frame")
        self.recBtn = QtWidgets.QPushButton(f"Record {cfg.record_seconds:.0f}s")

        capBox = QtWidgets.QGroupBox("Capture")
        kGrid = QtWidgets.QGridLayout(capBox); kGrid.setContentsMargins(8,8,8,8); kGrid.setHorizontalSpacing(8)
        kGrid.addWidget(QtWidgets.QLabel("Label"), 0, 0); kGrid.addWidget(self.labelEdit, 0, 1)
        kGrid.addWidget(self.saveBtn, 0, 2)
        kGrid.addWidget(QtWidgets.QLabel("Save dir"), 1, 0); kGrid.addWidget(self.saveDirEdit, 1, 1)
        kGrid.addWidget(self.recBtn, 1, 2)

        mono = QtGui.QFont("Menlo")
        if not QtGui.QFontInfo(mono).fixedPitch():
            mono = QtGui.QFont("Courier New")
        mono.setStyleHint(QtGui.QFont.TypeWriter)
        self.fpsLabel = QtWidgets.QLabel(format_fps(None)); self.fpsLabel.setFont(mono)
        self.detLabel = QtWidgets.QLabel("Det:   0"); self.detLabel.setFont(mono)
        self.skipLabel = QtWidgets.QLabel("Skipped: 0"); self.skipLabel.setFont(mono)
        self.statusLabel = QtWidgets.QLabel("")

        stats = QtWidgets.QHBoxLayout()
        stats.setContentsMargins(10, 0, 10, 0); stats.setSpacing(16)
        for w in (self.fpsLabel, self.detLabel, self.skipLabel):
            stats.addWidget(w)
        stats.addStretch(1)
        stats.addWidget(self.statusLabel)

        top = QtWidgets.QHBoxLayout()
        top.setContentsMargins(10, 10, 10, 0); top.setSpacing(12)
        top.addWidget(camBox, 3); top.addWidget(capBox, 2)

        self.pane = ImagePane()
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 10); layout.setSpacing(8)
        layout.addLayout(top, 0)
        layout.addLayout(stats, 0)
        layout.addWidget(self.pane, 1)

        self._apply_dark_theme()
        self.resize(1100, 800)

        self.poller: Optional[PollThread] = None
        self._retired: List[PollThread] = []
        self.last_frame: Optional[np.ndarray] = None
        self.recorder = VideoRecorder(Path(cfg.save_dir), fps=cfg.record_fps, max_seconds=cfg.record_seconds)
        self.recTimer = QtCore.QTimer(self); self.recTimer.setInterval(250)
        self.statsTimer = QtCore.QTimer(self); self.statsTimer.setInterval(500)

        self.runBtn.clicked.connect(self.toggle_polling)
        self.zoomSpin.valueChanged.connect(self.on_zoom_changed)
        self.saveBtn.clicked.connect(self.save_frame)
        self.recBtn.clicked.connect(self.toggle_recording)
        self.recTimer.timeout.connect(self._tick_recording)
        self.statsTimer.timeout.connect(self._refresh_stats)

    def _apply_dark_theme(self):
        palette = QtGui.QPalette()
        palette.setColor(QtGui.QPalette.Window, QtGui.QColor(20, 21, 26))
        palette.setColor(QtGui.QPalette.Base, QtGui.QColor(30, 32, 40))
        palette.setColor(QtGui.QPalette.WindowText, QtGui.QColor(228, 228, 234))
        palette.setColor(QtGui.QPalette.Text, QtGui.QColor(228, 228, 234))
        palette.setColor(QtGui.QPalette.Button, QtGui.QColor(30, 32, 40))
        palette.setColor(QtGui.QPalette.ButtonText, QtGui.QColor(228, 228, 234))
        palette.setColor(QtGui.QPalette.Highlight, QtGui.QColor(255, 200, 60))
        self.setPalette(palette)
        self.setStyleSheet("""
        QGroupBox { border: 1px solid #3a3f4b; border-radius: 8px; margin-top: 12px; padding: 6px 8px 8px 8px; }
        QGroupBox::title { subcontrol-origin: margin; left: 10px; padding: 0 4px; color: #ffc83c; }
        QPushButton { background: #2a2f3b; border: 1px solid #3f4656; border-radius: 6px; padding: 6px 12px; }
        QPushButton:hover { border-color: #ffc83c; }
        QLineEdit, QDoubleSpinBox { background: #20232c; border: 1px solid #3a3f4b; border-radius: 5px; padding: 3px 5px; }
        QScrollArea { background: black; border: none; }
        """)

    # ---------- polling ----------

    def toggle_polling(self):
        if self.poller is not None:
            self._stop_polling()
            return
        base_url = self.urlEdit.text().strip()
        try:
            cfg = replace(self.cfg, base_url=base_url).validate()
        except ValueError as e:
            QtWidgets.QMessageBox.critical(self, "Bad URL", str(e))
            return
        self.cfg = cfg
        self.last_frame = None
        self.pane.clear_frame("Connecting...")
        self.poller = PollThread(cfg, self.zoomSpin.value())
        self.poller.frame_ready.connect(self.on_frame_ready)
        self.poller.error.connect(self.on_poller_error)
        self.poller.finished.connect(self._on_poller_finished)
        self.poller.start()
        self.statsTimer.start()
        self.urlEdit.setEnabled(False)
        self.runBtn.setText("Stop")

    def _stop_polling(self):
        poller = self.poller
        if poller is not None and not poller.stop():
            log.warning("Poll thread still inside a fetch, keeping it until it exits")
            self._retired.append(poller)
            poller.finished.connect(lambda p=poller: self._retired.remove(p) if p in self._retired else None)
        self._on_poller_finished()

    def _on_poller_finished(self):
        sender = self.sender()
        if isinstance(sender, PollThread) and sender is not self.poller:
            return  # late signal from a thread already replaced
        self.statsTimer.stop()
        self.poller = None
        self.urlEdit.setEnabled(True)
        self.runBtn.setText("Start")

    def on_poller_error(self, msg: str):
        QtWidgets.QMessageBox.critical(self, "Polling error", msg)

    def on_zoom_changed(self, value: float):
        if self.poller is not None:
            self.poller.set_zoom(value)

    def on_frame_ready(self, img: np.ndarray, fps_text: str, n_det: int):
        self.last_frame = img
        self.pane.set_frame(img)
        self.fpsLabel.setText(fps_text)
        self.detLabel.setText(f"Det: {n_det:3d}")
        if self.recorder.recording:
            try:
                if not self.recorder.write(img):
                    self._finish_recording()
            except RuntimeError as e:
                self._finish_recording()
                QtWidgets.QMessageBox.critical(self, "Recording error", str(e))

    def _refresh_stats(self):
        loop = self.poller.loop if self.poller is not None else None
        if loop is not None:
            self.skipLabel.setText(f"Skipped: {loop.abandoned_count}")

    # ---------- capture ----------

    def _save_dir(self) -> Path:
        return Path(self.saveDirEdit.text().strip() or self.cfg.save_dir).expanduser().resolve()

    def save_frame(self):
        if self.last_frame is None:
            self.statusLabel.setText("Nothing to save yet")
            return
        try:
            path = save_snapshot(self.last_frame, self._save_dir(), self.labelEdit.text())
        except (OSError, RuntimeError) as e:
            QtWidgets.QMessageBox.critical(self, "Save failed", str(e))
            return
        self.statusLabel.setText(f"Saved {path.name}")

    def toggle_recording(self):
        if self.recorder.recording:
            self._finish_recording()
            return
        self.recorder.out_dir = self._save_dir()
        try:
            self.recorder.start(self.labelEdit.text() or "clip")
        except OSError as e:
            QtWidgets.QMessageBox.critical(self, "Recording error", str(e))
            return
        self.recTimer.start()
        self._tick_recording()

    def _tick_recording(self):
        left = self.recorder.remaining_seconds()
        if left <= 0:
            self._finish_recording()
            return
        self.recBtn.setText(f"Stop ({left:.0f}s)")

    def _finish_recording(self):
        self.recTimer.stop()
        path = self.recorder.stop()
        self.recBtn.setText(f"Record {self.cfg.record_seconds:.0f}s")
        self.statusLabel.setText(f"Saved {path.name}" if path else "Recording empty, nothing saved")

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:
        if self.recorder.recording:
            self._finish_recording()
        self._stop_polling()
        for poller in list(self._retired):
            poller.wait()
        super().closeEvent(event)
