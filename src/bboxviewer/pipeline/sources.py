from __future__ import annotations
import json, logging
from typing import Any, List, Optional

import cv2
import numpy as np

from .errors import DecodeError, ParseError
from .fetch import BoundedFetcher
from .types import Detection, DetectionBatch, Frame

log = logging.getLogger("pipeline.sources")


def decode_jpeg(data: bytes) -> np.ndarray:
    if not data:
        raise DecodeError("empty image body")
    buf = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if img is None:
        raise DecodeError(f"could not decode {len(data)} bytes as an image")
    return img


def _number(raw: Any, what: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ParseError(f"{what} is not a number: {raw!r}")
    return float(raw)


def parse_detection_batch(body: bytes) -> DetectionBatch:
    try:
        doc = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise ParseError(f"detection body is not JSON: {e}") from e
    if not isinstance(doc, dict):
        raise ParseError(f"expected a JSON object, got {type(doc).__name__}")
    boxes = doc.get("bboxes")
    if not isinstance(boxes, list):
        raise ParseError("missing 'bboxes' list")

    detections: List[Detection] = []
    for i, box in enumerate(boxes):
        if not isinstance(box, dict):
            raise ParseError(f"bboxes[{i}] is not an object")
        try:
            coords = [_number(box[k], f"bboxes[{i}].{k}") for k in ("xmin", "ymin", "xmax", "ymax")]
        except KeyError as e:
            raise ParseError(f"bboxes[{i}] missing {e.args[0]}") from e
        detections.append(Detection(str(box.get("id", "")), *coords))

    latency: Optional[float] = None
    if doc.get("dtime") is not None:
        latency = _number(doc["dtime"], "dtime")
    seq = doc.get("seq")
    if seq is not None and (isinstance(seq, bool) or not isinstance(seq, int)):
        raise ParseError(f"seq is not an integer: {seq!r}")
    return DetectionBatch(detections=detections, processing_latency_ms=latency, sequence=seq)


class FrameSource:
    def __init__(self, fetcher: BoundedFetcher):
        self.fetcher = fetcher

    def read(self) -> Frame:
        return Frame(data=self.fetcher.fetch())


class DetectionSource:
    def __init__(self, fetcher: BoundedFetcher):
        self.fetcher = fetcher
        self._last_seq: Optional[int] = None

    def read(self) -> DetectionBatch:
        batch = parse_detection_batch(self.fetcher.fetch())
        if batch.sequence is not None:
            if self._last_seq is not None and batch.sequence <= self._last_seq:
                log.warning("Detection seq went from %d to %d (stale or replayed batch)",
                            self._last_seq, batch.sequence)
            self._last_seq = batch.sequence
        return batch
