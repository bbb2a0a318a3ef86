from __future__ import annotations
"""
Frame scheduling around a LocalizationPipeline.

FrameScheduler pulls one frame per tick from a source, runs the pipeline and pushes the
result to a sink. It only asks its host for the next tick after the current one has
finished, so ticks never overlap. Hosts:

- ManualHost: FIFO of pending tick requests drained by the embedding code (and tests)
- IntervalHost: one background worker thread paced at a target FPS
"""

import itertools
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Protocol

from common.logging_setup import get_logger
from common.types import ImageBuffer
from common.utils import RateTimer
from locator.annotate import FrameOverlay, MatchVisualization, build_frame_overlay, build_match_visualization
from locator.config import VisualizationConfig
from locator.pipeline import LocalizationPipeline
from locator.results import Found, LocalizationResult


log = get_logger("locator.scheduler")

FrameSource = Callable[[], Optional[ImageBuffer]]
ResultSink = Callable[[LocalizationResult], None]
VisualizationSink = Callable[[MatchVisualization], None]
OverlaySink = Callable[[FrameOverlay], None]
TickCallback = Callable[[], None]


class HostLoop(Protocol):
    def request_tick(self, callback: TickCallback) -> int: ...

    def cancel(self, handle: int) -> None: ...


# -----------------------------
# Hosts
# -----------------------------

class ManualHost:
    """Pending tick requests run only when run_pending() is called."""

    def __init__(self) -> None:
        self._queue: "OrderedDict[int, TickCallback]" = OrderedDict()
        self._ids = itertools.count(1)

    def request_tick(self, callback: TickCallback) -> int:
        handle = next(self._ids)
        self._queue[handle] = callback
        return handle

    def cancel(self, handle: int) -> None:
        self._queue.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def run_pending(self, max_ticks: Optional[int] = None) -> int:
        """Run queued callbacks in request order (including ones they enqueue). Returns the count run."""
        ran = 0
        while self._queue and (max_ticks is None or ran < max_ticks):
            _, cb = self._queue.popitem(last=False)
            cb()
            ran += 1
        return ran


class IntervalHost:
    """
    Runs requested ticks on a single worker thread, at most `fps` per second.

    Args:
        fps: target tick rate (Hz); <= 0 runs ticks back to back
    """

    def __init__(self, fps: float = 30.0) -> None:
        self.period = 0.0 if fps <= 0 else 1.0 / float(fps)
        self.rate = RateTimer()
        self._queue: "OrderedDict[int, TickCallback]" = OrderedDict()
        self._ids = itertools.count(1)
        self._cond = threading.Condition()
        self._closed = False
        self._last_run = 0.0
        self._thread = threading.Thread(target=self._run, name="locator-interval-host", daemon=True)
        self._thread.start()

    def request_tick(self, callback: TickCallback) -> int:
        with self._cond:
            if self._closed:
                raise RuntimeError("IntervalHost is closed")
            handle = next(self._ids)
            self._queue[handle] = callback
            self._cond.notify()
            return handle

    def cancel(self, handle: int) -> None:
        with self._cond:
            self._queue.pop(handle, None)

    @property
    def tick_rate(self) -> float:
        """Measured ticks per second over the recent window (0.0 before two ticks)."""
        return self.rate.rate()

    def close(self, timeout: float = 2.0) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._queue.clear()
            self._cond.notify_all()
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)
        log.info("Interval host closed", extra={"extra": {"tick_rate_hz": round(self.tick_rate, 2)}})

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._queue and not self._closed:
                    self._cond.wait()
                if self._closed:
                    return
                # Pace to the target period; a cancel() during the wait empties the queue.
                wait_s = self._last_run + self.period - time.perf_counter()
                if wait_s > 0:
                    self._cond.wait(timeout=wait_s)
                    continue
                _, cb = self._queue.popitem(last=False)
            self._last_run = time.perf_counter()
            self.rate.tick()
            try:
                cb()
            except Exception:
                log.exception("Tick callback raised")


# -----------------------------
# Scheduler
# -----------------------------

class FrameScheduler:
    """
    Drives one pipeline session.

    start() requests the first tick; each completed tick requests the next. stop() is
    idempotent: it clears the running flag, cancels the queued request and stops the
    pipeline (releasing its buffers). A tick already executing when stop() is called
    finishes, but its result is not delivered.
    """

    def __init__(
        self,
        pipeline: LocalizationPipeline,
        source: FrameSource,
        sink: ResultSink,
        *,
        host: Optional[HostLoop] = None,
        visualization_sink: Optional[VisualizationSink] = None,
        overlay_sink: Optional[OverlaySink] = None,
        visualization: Optional[VisualizationConfig] = None,
    ):
        self.pipeline = pipeline
        self.source = source
        self.sink = sink
        self.host = host
        self.visualization_sink = visualization_sink
        self.overlay_sink = overlay_sink
        self.visualization = visualization or pipeline.config.visualization
        self._running = False
        self._stopped = False
        self._in_flight = False
        self._pending: Optional[int] = None
        self._lock = threading.RLock()
        self.delivered = 0
        self.sink_errors = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._stopped:
                raise RuntimeError("scheduler already stopped; create a new session")
            if self._running:
                return
            self.pipeline.start()
            self._running = True
        self._schedule()

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._running = False
            self._stopped = True
            pending, self._pending = self._pending, None
        if pending is not None and self.host is not None:
            self.host.cancel(pending)
        self.pipeline.stop()
        log.info("Frame scheduler stopped", extra={"extra": self.snapshot()})

    def snapshot(self) -> Dict[str, Any]:
        snap: Dict[str, Any] = {"delivered": self.delivered, "sink_errors": self.sink_errors}
        if isinstance(self.host, IntervalHost):
            snap["host_rate_hz"] = round(self.host.tick_rate, 2)
        return snap

    def tick(self) -> Optional[LocalizationResult]:
        """Run exactly one tick now. Returns the delivered result, or None if nothing was delivered."""
        with self._lock:
            if not self._running or self._in_flight:
                return None
            self._in_flight = True
        try:
            return self._tick()
        finally:
            with self._lock:
                self._in_flight = False

    def _tick(self) -> Optional[LocalizationResult]:
        try:
            frame = self.source()
        except Exception:
            log.warning("Frame capture failed; skipping tick", exc_info=True)
            return None
        if not self._running:
            return None

        result = self.pipeline.process(frame)
        if result is None:
            return None

        # Delivery and stop() are serialized on the same lock.
        with self._lock:
            if not self._running:
                return None
            self.delivered += 1
            self._deliver(self.sink, lambda: result, "result")
            if self.overlay_sink is not None and self._running:
                self._deliver(
                    self.overlay_sink,
                    lambda: build_frame_overlay(result, highlight_count=self.visualization.highlight_count),
                    "overlay",
                )
            if self.visualization_sink is not None and isinstance(result, Found) and self._running:
                cfg = self.visualization
                self._deliver(
                    self.visualization_sink,
                    lambda: build_match_visualization(
                        result,
                        self.pipeline.reference_size,
                        target_height=cfg.target_height,
                        max_pairs=cfg.max_pairs,
                        best_count=cfg.best_count,
                    ),
                    "visualization",
                )
        return result

    def _deliver(self, sink: Callable[[Any], None], build: Callable[[], Any], kind: str) -> None:
        # A failing consumer loses this tick's output; the session keeps running.
        try:
            sink(build())
        except Exception:
            self.sink_errors += 1
            log.warning(
                "Sink raised; dropping output",
                exc_info=True,
                extra={"extra": {"kind": kind, "sink_errors": self.sink_errors}},
            )

    def _schedule(self) -> None:
        if self.host is None:
            return
        with self._lock:
            if not self._running:
                return
            self._pending = self.host.request_tick(self._on_tick)

    def _on_tick(self) -> None:
        with self._lock:
            self._pending = None
        try:
            self.tick()
        finally:
            self._schedule()
