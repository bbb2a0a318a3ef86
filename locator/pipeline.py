from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np

from common.buffers import BufferRegistry, TrackedBuffer
from common.logging_setup import session_logger
from common.types import DescriptorSet, ImageBuffer
from common.utils import RunningStats, elapsed_ms
from locator.config import LocatorConfig
from locator.errors import MalformedInputError, PipelineStateError
from locator.features import (
    DescriptorExtractor,
    DescriptorMatcher,
    matched_points,
    select_with_config,
)
from locator.homography import HomographyEstimator, project_points, reference_corners
from locator.preprocess import image_to_gray
from locator.results import Found, LocalizationResult, NotFound, NotFoundReason


_session_ids = itertools.count(1)


class PipelineState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class PipelineStats:
    ticks: int = 0
    found: int = 0
    not_found: int = 0
    skipped: int = 0
    faults: int = 0
    latency_ms: RunningStats = field(default_factory=RunningStats)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "ticks": self.ticks,
            "found": self.found,
            "not_found": self.not_found,
            "skipped": self.skipped,
            "faults": self.faults,
            "latency_ms_mean": round(self.latency_ms.mean, 3),
            "latency_ms_max": round(self.latency_ms.max, 3),
        }


class LocalizationPipeline:
    """
    One detection session: reference descriptors computed once, then one tick per frame.

    States: IDLE -prepare()-> READY -start()-> RUNNING -stop()-> STOPPED (terminal).
    A new session needs a new instance. The extractor/matcher/estimator are built from
    `config` per instance; every array the session keeps is registered with `registry`
    and released by stop().
    """

    def __init__(self, config: Optional[LocatorConfig] = None, *, registry: Optional[BufferRegistry] = None):
        self.config = config or LocatorConfig()
        self.registry = registry if registry is not None else BufferRegistry()
        self.extractor = DescriptorExtractor.from_config(self.config.extractor)
        self.matcher = DescriptorMatcher.from_config(self.config.matcher)
        self.estimator = HomographyEstimator.from_config(self.config.homography)
        self.stats = PipelineStats()
        self.session_id = next(_session_ids)
        self.log = session_logger("locator.pipeline", session=self.session_id)

        self._state = PipelineState.IDLE
        self._stop_requested = threading.Event()
        self._lock = threading.RLock()
        self._reference: Optional[DescriptorSet] = None
        self._reference_size: Tuple[int, int] = (0, 0)
        self._reference_buf: Optional[TrackedBuffer] = None
        self._frame_gray: Optional[TrackedBuffer] = None

    # -----------------------------
    # Session lifecycle
    # -----------------------------

    @property
    def state(self) -> PipelineState:
        if self._stop_requested.is_set():
            return PipelineState.STOPPED
        return self._state

    @property
    def running(self) -> bool:
        return self.state is PipelineState.RUNNING

    @property
    def reference(self) -> Optional[DescriptorSet]:
        return self._reference

    @property
    def reference_size(self) -> Tuple[int, int]:
        return self._reference_size

    def prepare(self, reference) -> DescriptorSet:
        """Compute reference descriptors (IDLE -> READY). Bad input is fatal to the session."""
        with self._lock:
            if self.state is not PipelineState.IDLE:
                raise PipelineStateError(f"prepare() requires idle pipeline, state is {self.state.value}")
            image = self._validate_reference(reference)
            try:
                ref = self.extractor.extract(image)
            except Exception as e:
                raise MalformedInputError(f"reference image could not be processed: {e}") from e

            self._reference = ref
            self._reference_size = image.size
            self._reference_buf = self.registry.adopt(ref.descriptors, tag="reference_descriptors")
            self._state = PipelineState.READY
            self.log.info(
                "Reference prepared",
                extra={"extra": {**image.to_meta(), "keypoints": len(ref)}},
            )
            return ref

    def start(self) -> None:
        with self._lock:
            if self.state is not PipelineState.READY:
                raise PipelineStateError(f"start() requires ready pipeline, state is {self.state.value}")
            self._state = PipelineState.RUNNING
            self.log.info("Localization session started", extra={"extra": {"reference_keypoints": len(self._reference)}})

    def stop(self) -> None:
        """
        Idempotent. The state reads STOPPED as soon as this is called, from any thread;
        buffers are released once an in-flight tick has finished.
        """
        self._stop_requested.set()
        with self._lock:
            if self._state is PipelineState.STOPPED:
                return
            self._state = PipelineState.STOPPED
            if self._frame_gray is not None:
                self._frame_gray.release()
                self._frame_gray = None
            if self._reference_buf is not None:
                self._reference_buf.release()
                self._reference_buf = None
            self._reference = None
            self.log.info("Localization session stopped", extra={"extra": self.stats.snapshot()})

    # -----------------------------
    # Per-frame tick
    # -----------------------------

    def process(self, frame: Optional[ImageBuffer]) -> Optional[LocalizationResult]:
        """
        Run one tick. Returns None when the tick is skipped (no frame / zero-area frame)
        or the session has been stopped; otherwise a Found/NotFound result.
        """
        with self._lock:
            state = self.state
            if state is PipelineState.STOPPED:
                return None
            if state is not PipelineState.RUNNING:
                raise PipelineStateError(f"process() requires running pipeline, state is {state.value}")
            if frame is None or frame.area == 0:
                self.stats.skipped += 1
                return None

            t0 = time.perf_counter()
            self.stats.ticks += 1
            try:
                result = self._locate(frame)
            except Exception:
                self.stats.faults += 1
                self.log.warning(
                    "Tick failed; reporting not found",
                    exc_info=True,
                    extra={"extra": {"tick": self.stats.ticks, **frame.to_meta()}},
                )
                result = NotFound(NotFoundReason.BACKEND_FAULT)

            if self._stop_requested.is_set():
                # stop() landed mid-tick; the result is discarded
                return None
            if result.found:
                self.stats.found += 1
            else:
                self.stats.not_found += 1
            dt = elapsed_ms(t0)
            self.stats.latency_ms.add(dt)
            self.log.debug("Tick done", extra={"extra": {"tick": self.stats.ticks, "latency_ms": round(dt, 3), **result.to_dict()}})
            return result

    def _frame_buffer(self, width: int, height: int) -> np.ndarray:
        # Reused across ticks; reallocated only when the source resolution changes.
        buf = self._frame_gray
        if buf is None or buf.shape != (height, width):
            if buf is not None:
                buf.release()
            buf = self.registry.allocate((height, width), dtype=np.uint8, tag="frame_gray")
            self._frame_gray = buf
            self.log.debug("Frame buffer allocated", extra={"extra": {"width": width, "height": height}})
        return buf.array

    def _locate(self, frame: ImageBuffer) -> LocalizationResult:
        ref = self._reference
        gray = image_to_gray(frame, dst=self._frame_buffer(frame.width, frame.height))

        with self.registry.scope() as scope:
            cur = self.extractor.extract_gray(gray)
            scope.adopt(cur.descriptors, tag="frame_descriptors")
            frame_kps = tuple(kp.pt for kp in cur.keypoints)

            if ref is None or ref.is_empty:
                return NotFound(NotFoundReason.NO_REFERENCE_FEATURES, frame_kps)
            if cur.is_empty:
                return NotFound(NotFoundReason.NO_FRAME_FEATURES, frame_kps)

            matches = self.matcher.match(ref, cur)
            good = select_with_config(matches, self.config.selector)
            if len(good) < self.estimator.min_correspondences:
                return NotFound(NotFoundReason.INSUFFICIENT_MATCHES, frame_kps)

            ref_pts, frm_pts = matched_points(ref, cur, good)
            fit = self.estimator.fit(ref_pts, frm_pts)
            if fit.H is None:
                return NotFound(NotFoundReason.NO_HOMOGRAPHY, frame_kps)

            corners = project_points(fit.H, reference_corners(*self._reference_size))
            return Found(
                corners=corners,
                matches=tuple(good),
                reference_points=ref_pts,
                frame_points=frm_pts,
                homography=fit.H,
                inliers=fit.inliers,
                rmse_px=fit.rmse_px,
                frame_size=frame.size,
                frame_keypoints=frame_kps,
            )

    # -----------------------------
    # Helpers
    # -----------------------------

    @staticmethod
    def _validate_reference(reference) -> ImageBuffer:
        if isinstance(reference, ImageBuffer):
            image = reference
        else:
            try:
                image = ImageBuffer.from_array(reference)
            except (TypeError, ValueError) as e:
                raise MalformedInputError(f"invalid reference image: {e}") from e
        if image.area == 0:
            raise MalformedInputError("reference image has zero area")
        return image
