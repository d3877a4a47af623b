from __future__ import annotations
import logging, threading, time
from typing import Callable, Optional

from .errors import ViewerError
from .overlay import check_zoom, render_overlay
from .rate import RateReporter
from .sources import DetectionSource, FrameSource, decode_jpeg
from .types import IterationResult, LoopState, Outcome, RenderedFrame

log = logging.getLogger("pipeline.loop")


class PollingLoop:
    """Fetch frame, fetch detections, render, sleep; repeat until stopped.

    Every failure inside an iteration (timeout, transport, bad JSON, bad JPEG)
    is logged and drops that iteration only. Frame and batch never outlive the
    iteration that fetched them.
    """
    def __init__(self, frames: FrameSource, detections: DetectionSource,
                 zoom: Callable[[], float] = lambda: 1.0,
                 on_render: Optional[Callable[[RenderedFrame], None]] = None,
                 idle_s: float = 0.03,
                 stop_event: Optional[threading.Event] = None):
        self.frames = frames
        self.detections = detections
        self.zoom = zoom
        self.on_render = on_render
        self.idle_s = max(0.0, float(idle_s))
        self.rate = RateReporter()
        self.state = LoopState.STOPPED
        self.rendered_count = 0
        self.abandoned_count = 0
        self._stop = stop_event or threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self):
        self._stop.set()

    def _enter(self, state: LoopState) -> bool:
        if self._stop.is_set():
            self.state = LoopState.STOPPED
            return False
        self.state = state
        return True

    def _abandon(self, state: LoopState, err: ViewerError, timings: dict) -> IterationResult:
        self.abandoned_count += 1
        log.warning("%s failed, skipping iteration: %s", state.value, err)
        return IterationResult(Outcome.ABANDONED, state, error=err, timings_ms=timings)

    def run_once(self) -> IterationResult:
        timings: dict = {}
        cancelled = lambda: IterationResult(Outcome.CANCELLED, LoopState.STOPPED, timings_ms=timings)

        if not self._enter(LoopState.FETCHING_FRAME):
            return cancelled()
        t0 = time.perf_counter()
        try:
            frame = self.frames.read()
        except ViewerError as e:
            return self._abandon(LoopState.FETCHING_FRAME, e, timings)
        timings["frame"] = (time.perf_counter() - t0) * 1000.0

        if not self._enter(LoopState.FETCHING_DETECTIONS):
            return cancelled()
        t0 = time.perf_counter()
        try:
            batch = self.detections.read()
        except ViewerError as e:
            return self._abandon(LoopState.FETCHING_DETECTIONS, e, timings)
        timings["detections"] = (time.perf_counter() - t0) * 1000.0
        fps = self.rate.update(batch)
        if batch.sequence is not None:
            log.debug("Batch seq=%d with %d boxes", batch.sequence, len(batch.detections))

        if not self._enter(LoopState.RENDERING):
            return cancelled()
        t0 = time.perf_counter()
        try:
            frame.image = decode_jpeg(frame.data)
        except ViewerError as e:
            return self._abandon(LoopState.RENDERING, e, timings)
        zoom = check_zoom(self.zoom())
        surface = render_overlay(frame.image, batch.detections, zoom)
        timings["render"] = (time.perf_counter() - t0) * 1000.0

        rendered = RenderedFrame(image=surface, batch=batch, zoom=zoom, fps=fps)
        self.rendered_count += 1
        if self.on_render is not None:
            self.on_render(rendered)
        return IterationResult(Outcome.RENDERED, LoopState.RENDERING, rendered=rendered, timings_ms=timings)

    def sleep(self) -> bool:
        """Idle between iterations; returns False when woken by stop()."""
        if not self._enter(LoopState.SLEEPING):
            return False
        return not self._stop.wait(self.idle_s)

    def run(self, max_iterations: Optional[int] = None):
        log.info("Polling loop started (idle %.0f ms)", self.idle_s * 1000.0)
        n = 0
        try:
            while not self._stop.is_set():
                self.run_once()
                n += 1
                if max_iterations is not None and n >= max_iterations:
                    break
                if not self.sleep():
                    break
        finally:
            self.state = LoopState.STOPPED
            log.info("Polling loop stopped: %d rendered, %d abandoned",
                     self.rendered_count, self.abandoned_count)
