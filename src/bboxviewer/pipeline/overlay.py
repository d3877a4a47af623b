from __future__ import annotations
import math
from typing import Iterable, Tuple
import cv2
import numpy as np
from .types import Detection

BOX_COLOR = (60, 220, 255)
TEXT_COLOR = (0, 0, 0)

def clamp(v: float, lo: float, hi: float) -> float:
    if math.isnan(v):
        return lo
    return max(lo, min(hi, v))

def check_zoom(zoom: float) -> float:
    z = float(zoom)
    if not math.isfinite(z) or z <= 0:
        raise ValueError(f"zoom must be a positive number, got {zoom!r}")
    return z

def scaled_size(width: int, height: int, zoom: float) -> Tuple[int, int]:
    z = check_zoom(zoom)
    return max(1, int(round(width * z))), max(1, int(round(height * z)))

def to_pixel_box(det: Detection, width: int, height: int) -> Tuple[int, int, int, int]:
    """Normalized box -> pixel box on a ``width`` x ``height`` surface, clamped to it."""
    x1 = clamp(det.xmin * width, 0, width)
    y1 = clamp(det.ymin * height, 0, height)
    x2 = clamp(det.xmax * width, 0, width)
    y2 = clamp(det.ymax * height, 0, height)
    return int(round(x1)), int(round(y1)), int(round(x2)), int(round(y2))

def render_overlay(img: np.ndarray, detections: Iterable[Detection], zoom: float = 1.0) -> np.ndarray:
    """Scale ``img`` by ``zoom`` and draw every detection on top, in batch order."""
    h, w = img.shape[:2]
    out_w, out_h = scaled_size(w, h, zoom)
    if (out_w, out_h) == (w, h):
        out = img.copy()
    else:
        interp = cv2.INTER_AREA if out_w < w else cv2.INTER_LINEAR
        out = cv2.resize(img, (out_w, out_h), interpolation=interp)

    font_scale = 0.5 if out_w < 800 else 0.6
    for det in detections:
        x1, y1, x2, y2 = to_pixel_box(det, out_w, out_h)
        cv2.rectangle(out, (x1, y1), (x2, y2), BOX_COLOR, 2, cv2.LINE_AA)
        label = det.id
        if not label:
            continue
        (tw, th), _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
        # label sits above the box unless that would leave the surface
        y = y1 if y1 - th - 6 >= 0 else min(out_h, y1 + th + 6)
        cv2.rectangle(out, (x1, y - th - 6), (x1 + tw + 6, y), BOX_COLOR, -1, cv2.LINE_AA)
        cv2.putText(out, label, (x1 + 3, y - 3), cv2.FONT_HERSHEY_SIMPLEX, font_scale, TEXT_COLOR, 1, cv2.LINE_AA)
    return out
