from __future__ import annotations
import logging, re, uuid
from pathlib import Path
import cv2, numpy as np

log = logging.getLogger("pipeline.capture")

_UNSAFE = re.compile(r"[^\w.-]+")

def make_capture_name(label: str, ext: str) -> str:
    """``<label>.<8 hex digits>.<ext>``; the suffix keeps repeated saves apart."""
    stem = _UNSAFE.sub("_", (label or "").strip()).strip("._") or "frame"
    return f"{stem}.{uuid.uuid4().hex[:8]}.{ext.lstrip('.')}"

def save_snapshot(image: np.ndarray, out_dir: Path, label: str, quality: int = 92) -> Path:
    out_dir = Path(out_dir).expanduser()
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / make_capture_name(label, "jpg")
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise RuntimeError("Failed to encode snapshot as JPEG")
    path.write_bytes(buf.tobytes())
    log.info("Saved snapshot %s (%dx%d)", path, image.shape[1], image.shape[0])
    return path
