from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import numpy as np

from .errors import ViewerError

@dataclass(frozen=True)
class Detection:
    id: str
    xmin: float
    ymin: float
    xmax: float
    ymax: float

@dataclass
class DetectionBatch:
    detections: List[Detection]
    processing_latency_ms: Optional[float]
    sequence: Optional[int] = None    # server provenance, when the peer sends "seq"

@dataclass
class Frame:
    data: bytes
    image: Optional[np.ndarray] = None

class LoopState(str, Enum):
    FETCHING_FRAME = "fetching_frame"
    FETCHING_DETECTIONS = "fetching_detections"
    RENDERING = "rendering"
    SLEEPING = "sleeping"
    STOPPED = "stopped"

class Outcome(str, Enum):
    RENDERED = "rendered"
    ABANDONED = "abandoned"
    CANCELLED = "cancelled"

@dataclass
class RenderedFrame:
    image: np.ndarray                 # BGR surface, frame + overlay, already zoomed
    batch: DetectionBatch
    zoom: float
    fps: Optional[float]

@dataclass
class IterationResult:
    outcome: Outcome
    state: LoopState                  # state the iteration ended in (or was abandoned at)
    error: Optional[ViewerError] = None
    rendered: Optional[RenderedFrame] = None
    timings_ms: dict = field(default_factory=dict)
