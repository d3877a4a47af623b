from __future__ import annotations
import math
from typing import Optional
from .types import DetectionBatch

UNAVAILABLE = "--"

def compute_fps(latency_ms: Optional[float]) -> Optional[float]:
    """Frames per second implied by the detector's processing latency, or None."""
    if latency_ms is None:
        return None
    try:
        fps = 1000.0 / float(latency_ms)
    except (ZeroDivisionError, TypeError, ValueError):
        return None
    if not math.isfinite(fps) or fps <= 0:
        return None
    return fps

def format_fps(fps: Optional[float]) -> str:
    if fps is None or not math.isfinite(fps):
        return f"FPS: {UNAVAILABLE}"
    return f"FPS: {fps:.2f}"

class RateReporter:
    def __init__(self):
        self.fps: Optional[float] = None

    def update(self, batch: DetectionBatch) -> Optional[float]:
        self.fps = compute_fps(batch.processing_latency_ms)
        return self.fps

    @property
    def available(self) -> bool:
        return self.fps is not None

    def text(self) -> str:
        return format_fps(self.fps)
