"""
Reference-image localization in a live video stream.

This package provides:
- ORB keypoint/descriptor extraction and cross-checked Hamming matching
- good-match selection and RANSAC homography verification
- LocalizationPipeline: per-session state machine, one Found/NotFound result per frame
- FrameScheduler: start/stop/tick driver with pluggable host loops
- annotation records (outline, keypoints, side-by-side match layout) for a renderer

Typical use:
    pipeline = LocalizationPipeline(LocatorConfig.from_yaml("config/params.yaml"))
    pipeline.prepare(reference_image)
    scheduler = FrameScheduler(pipeline, source=grab_frame, sink=on_result, host=IntervalHost(30))
    scheduler.start()
    ...
    scheduler.stop()
"""
from .config import LocatorConfig
from .errors import LocatorError, MalformedInputError, PipelineStateError
from .features import DescriptorExtractor, DescriptorMatcher, select_good_matches
from .homography import HomographyEstimator
from .pipeline import LocalizationPipeline, PipelineState
from .results import Found, LocalizationResult, NotFound, NotFoundReason
from .scheduler import FrameScheduler, IntervalHost, ManualHost

__all__ = [
    "LocatorConfig",
    "LocatorError",
    "MalformedInputError",
    "PipelineStateError",
    "DescriptorExtractor",
    "DescriptorMatcher",
    "select_good_matches",
    "HomographyEstimator",
    "LocalizationPipeline",
    "PipelineState",
    "Found",
    "LocalizationResult",
    "NotFound",
    "NotFoundReason",
    "FrameScheduler",
    "IntervalHost",
    "ManualHost",
]
