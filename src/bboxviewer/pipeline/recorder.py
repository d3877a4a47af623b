from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional, Tuple
import cv2, numpy as np, logging, time
from .capture import make_capture_name
log = logging.getLogger("pipeline.recorder")

class VideoRecorder:
    """Writes rendered surfaces to a WebM clip that ends itself after ``max_seconds``.

    Frames arrive at the polling rate, not at ``fps``. Each one lands in the
    slot its arrival time maps to: gaps repeat the previous frame and a second
    frame for an already written slot is dropped, so the clip plays back in
    real time.
    """
    def __init__(self, out_dir: Path, fps: int = 10, max_seconds: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.out_dir = Path(out_dir)
        self.fps = max(1, int(fps))
        self.max_seconds = float(max_seconds)
        self.clock = clock
        self.writer: Optional[cv2.VideoWriter] = None
        self.frame_size: Optional[Tuple[int, int]] = None
        self.path: Optional[Path] = None
        self.frames_written = 0
        self._started_at = 0.0
        self._last: Optional[np.ndarray] = None

    @property
    def recording(self) -> bool:
        return self.path is not None

    def remaining_seconds(self) -> float:
        if not self.recording:
            return 0.0
        return max(0.0, self.max_seconds - (self.clock() - self._started_at))

    def start(self, label: str) -> Path:
        """Arms the recorder; the file opens on the first frame, sized to it."""
        self.stop()
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.out_dir / make_capture_name(label, "webm")
        self.frames_written = 0
        self._last = None
        self._started_at = self.clock()
        log.info("Recording %.0f s to %s", self.max_seconds, self.path)
        return self.path

    def _open(self, frame_size: Tuple[int, int]):
        fourcc = cv2.VideoWriter_fourcc(*'VP80')
        self.writer = cv2.VideoWriter(str(self.path), fourcc, self.fps, frame_size, True)
        if not self.writer or not self.writer.isOpened():
            self.writer = None
            self.path = None
            raise RuntimeError("Failed to open VideoWriter (VP8/WebM)")
        self.frame_size = frame_size

    def _slot(self, elapsed: float) -> int:
        return int(elapsed * self.fps)

    def _fill_to(self, slot: int):
        """Repeats the last frame through ``slot - 1``."""
        while self._last is not None and self.frames_written < slot:
            self.writer.write(self._last)
            self.frames_written += 1

    def write(self, frame: np.ndarray) -> bool:
        """Returns False once the clip is finished (or was never started)."""
        if not self.recording: return False
        if self.remaining_seconds() <= 0:
            self.stop()
            return False
        slot = self._slot(self.clock() - self._started_at)
        if slot < self.frames_written:
            return True
        fh, fw = frame.shape[:2]
        if self.writer is None:
            self._open((fw, fh))
        W, H = self.frame_size or (fw, fh)
        if (fw, fh) != (W, H):
            frame = cv2.resize(frame, (W, H), interpolation=cv2.INTER_AREA)
        if self._last is None:
            self._last = frame    # a late first frame also covers the slots before it
        self._fill_to(slot)
        self.writer.write(frame)
        self.frames_written += 1
        self._last = frame
        return True

    def stop(self) -> Optional[Path]:
        """Idempotent. Returns the finished file, or None if no frame was written."""
        path = self.path if self.writer is not None else None
        if self.writer is not None:
            elapsed = min(self.clock() - self._started_at, self.max_seconds)
            try: self._fill_to(self._slot(elapsed))
            finally:
                try: self.writer.release()
                finally:
                    self.writer = None
                    self.frame_size = None
                    self._last = None
        self.path = None
        if path is not None:
            log.info("Recording stopped: %s (%d frames)", path, self.frames_written)
        return path
