"""
Unit tests for the frame scheduler and host loops
"""

import logging
import threading
import time

import pytest
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.buffers import BufferRegistry
from common.types import ImageBuffer
from locator.annotate import FrameOverlay, MatchVisualization
from locator.config import LocatorConfig
from locator.pipeline import LocalizationPipeline, PipelineState
from locator.results import Found
from locator.scheduler import FrameScheduler, IntervalHost, ManualHost


@pytest.fixture
def registry():
    return BufferRegistry()


@pytest.fixture
def pipeline(reference_image, registry):
    p = LocalizationPipeline(registry=registry)
    p.prepare(reference_image)
    return p


class TestManualHost:
    """Test cases for ManualHost"""

    def test_fifo_and_cancel(self):
        host = ManualHost()
        seen = []
        h1 = host.request_tick(lambda: seen.append(1))
        host.request_tick(lambda: seen.append(2))
        host.request_tick(lambda: seen.append(3))
        host.cancel(h1)

        assert host.pending == 2
        assert host.run_pending() == 2
        assert seen == [2, 3]

    def test_max_ticks(self):
        host = ManualHost()
        for _ in range(5):
            host.request_tick(lambda: None)
        assert host.run_pending(max_ticks=2) == 2
        assert host.pending == 3


class TestFrameScheduler:
    """Test cases for FrameScheduler driven by a ManualHost"""

    def test_one_result_per_tick(self, pipeline, shifted_frame):
        results = []
        host = ManualHost()
        sched = FrameScheduler(pipeline, lambda: shifted_frame, results.append, host=host)
        sched.start()

        assert pipeline.state is PipelineState.RUNNING
        host.run_pending(max_ticks=4)

        assert len(results) == 4
        assert all(isinstance(r, Found) for r in results)
        assert host.pending == 1  # next tick already requested

    def test_stop_from_sink_halts_and_releases(self, pipeline, shifted_frame, registry):
        """Test stop() mid-run: no further results, queued tick cancelled, buffers released"""
        results = []
        host = ManualHost()

        def sink(r):
            results.append(r)
            if len(results) == 3:
                sched.stop()

        sched = FrameScheduler(pipeline, lambda: shifted_frame, sink, host=host)
        sched.start()
        host.run_pending(max_ticks=50)

        assert len(results) == 3
        assert host.pending == 0
        assert not sched.running
        assert registry.live_count == 0
        assert sched.tick() is None

    def test_stop_cancels_queued_tick(self, pipeline, shifted_frame, registry):
        results = []
        host = ManualHost()
        sched = FrameScheduler(pipeline, lambda: shifted_frame, results.append, host=host)
        sched.start()
        assert host.pending == 1

        sched.stop()
        sched.stop()

        assert host.pending == 0
        assert host.run_pending() == 0
        assert results == []
        assert registry.live_count == 0

    def test_result_of_interrupted_tick_discarded(self, pipeline, shifted_frame):
        """Test a tick in progress when stop() lands does not deliver its result"""
        results = []
        calls = []

        def source():
            calls.append(1)
            if len(calls) == 2:
                sched.stop()
            return shifted_frame

        host = ManualHost()
        sched = FrameScheduler(pipeline, source, results.append, host=host)
        sched.start()
        host.run_pending(max_ticks=10)

        assert len(calls) == 2
        assert len(results) == 1

    def test_not_ready_source_skips(self, pipeline, shifted_frame):
        frames = iter([None, ImageBuffer.blank(0, 0), shifted_frame])
        results = []
        host = ManualHost()
        sched = FrameScheduler(pipeline, lambda: next(frames), results.append, host=host)
        sched.start()
        host.run_pending(max_ticks=3)

        assert len(results) == 1
        assert pipeline.stats.skipped == 2

    def test_source_error_does_not_halt(self, pipeline, shifted_frame):
        state = {"n": 0}

        def source():
            state["n"] += 1
            if state["n"] == 1:
                raise OSError("capture failed")
            return shifted_frame

        results = []
        host = ManualHost()
        sched = FrameScheduler(pipeline, source, results.append, host=host)
        sched.start()
        host.run_pending(max_ticks=3)

        assert len(results) == 2
        assert sched.running

    def test_tick_not_reentrant(self, pipeline, shifted_frame):
        inner = []

        def sink(r):
            inner.append(sched.tick())

        sched = FrameScheduler(pipeline, lambda: shifted_frame, sink)
        sched.start()
        assert isinstance(sched.tick(), Found)
        assert inner == [None]

    def test_tick_without_host(self, pipeline, shifted_frame):
        results = []
        sched = FrameScheduler(pipeline, lambda: shifted_frame, results.append)
        assert sched.tick() is None  # not started
        sched.start()
        sched.tick()
        sched.tick()
        assert len(results) == 2

    def test_visualization_sink(self, pipeline, shifted_frame):
        vis = []
        sched = FrameScheduler(pipeline, lambda: shifted_frame, lambda r: None, visualization_sink=vis.append)
        sched.start()
        sched.tick()

        assert len(vis) == 1
        assert isinstance(vis[0], MatchVisualization)
        assert vis[0].height == pipeline.config.visualization.target_height

    def test_failing_sink_does_not_halt(self, pipeline, shifted_frame, caplog):
        """Test a sink that raises once loses that result only; ticks keep coming"""
        results = []

        def sink(r):
            results.append(r)
            if len(results) == 1:
                raise RuntimeError("renderer gone")

        host = ManualHost()
        sched = FrameScheduler(pipeline, lambda: shifted_frame, sink, host=host)
        sched.start()
        with caplog.at_level(logging.WARNING, logger="locator.scheduler"):
            host.run_pending(max_ticks=4)

        assert len(results) == 4
        assert sched.running
        assert host.pending == 1
        assert sched.sink_errors == 1
        assert sched.snapshot() == {"delivered": 4, "sink_errors": 1}
        assert any("Sink raised" in r.getMessage() for r in caplog.records)

    def test_failing_visualization_sink_does_not_halt(self, pipeline, shifted_frame):
        results, calls = [], []

        def vis_sink(v):
            calls.append(v)
            raise ValueError("bad layout")

        host = ManualHost()
        sched = FrameScheduler(pipeline, lambda: shifted_frame, results.append, host=host, visualization_sink=vis_sink)
        sched.start()
        host.run_pending(max_ticks=3)

        assert len(results) == 3
        assert len(calls) == 3
        assert host.pending == 1

    def test_overlay_sink_uses_highlight_count(self, reference_image, shifted_frame, registry):
        """Test per-frame overlays honor visualization.highlight_count"""
        cfg = LocatorConfig.from_dict({"visualization": {"highlight_count": 5}})
        p = LocalizationPipeline(cfg, registry=registry)
        p.prepare(reference_image)
        overlays = []
        sched = FrameScheduler(p, lambda: shifted_frame, lambda r: None, overlay_sink=overlays.append)
        sched.start()
        sched.tick()

        assert len(overlays) == 1
        assert isinstance(overlays[0], FrameOverlay)
        assert len(overlays[0].outline) == 4
        assert len(overlays[0].highlighted) == 5

    def test_overlay_for_not_found(self, pipeline, blank_image):
        overlays = []
        sched = FrameScheduler(pipeline, lambda: blank_image, lambda r: None, overlay_sink=overlays.append)
        sched.start()
        sched.tick()

        assert overlays[0].outline == ()
        assert overlays[0].highlighted == ()

    def test_restart_after_stop_rejected(self, pipeline, shifted_frame):
        sched = FrameScheduler(pipeline, lambda: shifted_frame, lambda r: None)
        sched.start()
        sched.stop()
        with pytest.raises(RuntimeError):
            sched.start()


class TestIntervalHost:
    """Test cases for the threaded host"""

    def test_runs_sequentially_and_stops(self, pipeline, shifted_frame, registry):
        results = []
        got_three = threading.Event()
        active = {"now": 0, "max": 0}
        lock = threading.Lock()

        def source():
            with lock:
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
            return shifted_frame

        def sink(r):
            results.append(r)
            with lock:
                active["now"] -= 1
            if len(results) >= 3:
                got_three.set()

        host = IntervalHost(fps=200.0)
        try:
            sched = FrameScheduler(pipeline, source, sink, host=host)
            sched.start()
            assert got_three.wait(timeout=20.0)
            sched.stop()
            n = len(results)
            time.sleep(0.1)

            assert len(results) == n
            assert active["max"] == 1
            assert registry.live_count == 0
        finally:
            host.close()

    def test_failing_sink_keeps_thread_loop_alive(self, pipeline, shifted_frame):
        results = []
        got_three = threading.Event()

        def sink(r):
            results.append(r)
            if len(results) == 1:
                raise RuntimeError("renderer gone")
            if len(results) >= 3:
                got_three.set()

        host = IntervalHost(fps=100.0)
        try:
            sched = FrameScheduler(pipeline, lambda: shifted_frame, sink, host=host)
            sched.start()
            assert got_three.wait(timeout=20.0)
            assert sched.running
            assert sched.sink_errors == 1
            sched.stop()
        finally:
            host.close()

    def test_tick_rate_reported(self, pipeline, shifted_frame):
        got_three = threading.Event()
        seen = []

        def sink(r):
            seen.append(r)
            if len(seen) >= 3:
                got_three.set()

        host = IntervalHost(fps=200.0)
        try:
            assert host.tick_rate == 0.0
            sched = FrameScheduler(pipeline, lambda: shifted_frame, sink, host=host)
            sched.start()
            assert got_three.wait(timeout=20.0)
            sched.stop()

            assert host.tick_rate > 0.0
            assert sched.snapshot()["host_rate_hz"] >= 0.0
        finally:
            host.close()

    def test_closed_host_rejects_requests(self):
        host = IntervalHost(fps=10.0)
        host.close()
        with pytest.raises(RuntimeError):
            host.request_tick(lambda: None)
