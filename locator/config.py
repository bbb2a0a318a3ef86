from __future__ import annotations
"""
Tunables for the localization core, loaded from config/params.yaml.

The good-match ratio/floor and the RANSAC inlier threshold are empirical; they live
here so they can be tuned per camera/target without code changes.
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from common.logging_setup import setup_logging


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{name}' section: {', '.join(unknown)}")
    return cls(**data)


@dataclass
class ExtractorConfig:
    nfeatures: int = 500
    scale_factor: float = 1.2
    nlevels: int = 8
    edge_threshold: int = 31
    fast_threshold: int = 20
    patch_size: int = 31


@dataclass
class MatcherConfig:
    cross_check: bool = True


@dataclass
class SelectorConfig:
    keep_ratio: float = 0.5
    min_keep: int = 10

    def __post_init__(self) -> None:
        if not (0.0 < self.keep_ratio <= 1.0):
            raise ValueError("keep_ratio must be in (0, 1]")
        if self.min_keep < 0:
            raise ValueError("min_keep must be >= 0")


@dataclass
class HomographyConfig:
    ransac_px: float = 5.0
    max_iters: int = 2000
    confidence: float = 0.995
    robust: bool = True
    seed: int = 0
    min_correspondences: int = 4

    def __post_init__(self) -> None:
        if self.ransac_px <= 0:
            raise ValueError("ransac_px must be > 0")
        if self.min_correspondences < 4:
            raise ValueError("a homography needs at least 4 correspondences")


@dataclass
class VisualizationConfig:
    target_height: int = 400
    max_pairs: int = 30
    best_count: int = 10
    highlight_count: int = 30


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"


@dataclass
class LocatorConfig:
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    homography: HomographyConfig = field(default_factory=HomographyConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LocatorConfig":
        data = dict(data or {})
        sections = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - sections)
        if unknown:
            raise ValueError(f"Unknown config sections: {', '.join(unknown)}")
        return cls(
            extractor=_section(ExtractorConfig, data.get("extractor"), "extractor"),
            matcher=_section(MatcherConfig, data.get("matcher"), "matcher"),
            selector=_section(SelectorConfig, data.get("selector"), "selector"),
            homography=_section(HomographyConfig, data.get("homography"), "homography"),
            visualization=_section(VisualizationConfig, data.get("visualization"), "visualization"),
            logging=_section(LoggingConfig, data.get("logging"), "logging"),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "LocatorConfig":
        with open(path, "r") as f:
            return cls.from_dict(yaml.safe_load(f))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def apply_logging(self) -> None:
        setup_logging(self.logging.level, fmt=self.logging.format, force=True)
