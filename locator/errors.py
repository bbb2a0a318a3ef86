from __future__ import annotations


class LocatorError(Exception):
    """Base class for localization core errors."""


class MalformedInputError(LocatorError, ValueError):
    """Reference image / buffer cannot start a session (bad shape, zero area, wrong dtype)."""


class PipelineStateError(LocatorError, RuntimeError):
    """Operation not allowed in the pipeline's current state."""
