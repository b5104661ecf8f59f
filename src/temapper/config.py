from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Used when neither window_size_anchor nor an insert-size estimate is available.
DEFAULT_INSERT_SIZE = 300


@dataclass(frozen=True)
class MapperConfig:
    """Read-only parameters of the insertion mapper.

    Attributes
    ----------
    window_size_junction:
        Maximum breakpoint gap (bp) that extends a junction cluster.
    window_size_anchor:
        Maximum breakpoint gap (bp) that extends an anchor cluster, and the
        distance within which junction and anchor clusters are merged. If
        None, derived from ``insert_size``.
    insert_size:
        Library fragment-size estimate (bp). Only used to derive
        ``window_size_anchor``.
    min_junction_clip:
        Minimum soft-clip length for a genome segment to count as junction
        evidence.
    junction_clip_slack:
        Allowed difference between a clip length and the aligned length of
        its realigned TE segment.
    min_anchor_support:
        Minimum anchor reads for a HIGH confidence call.
    family_ambiguity_margin:
        If the two most supported TE families differ by at most this many
        reads, the call's family is AMBIGUOUS.
    max_tsd_length:
        Largest target-site duplication (bp) accepted when pairing two
        junction-supported flanks as a non-reference insertion.
    min_te_length_fraction, max_te_length_fraction:
        Two junction-supported flanks enclosing between these fractions of
        the TE consensus length are called as a TE present in the reference.
    workers:
        Number of contigs processed in parallel.
    """

    window_size_junction: int = 5
    window_size_anchor: Optional[int] = None
    insert_size: Optional[int] = None
    min_junction_clip: int = 20
    junction_clip_slack: int = 2
    min_anchor_support: int = 3
    family_ambiguity_margin: int = 1
    max_tsd_length: int = 30
    min_te_length_fraction: float = 0.1
    max_te_length_fraction: float = 1.5
    workers: int = 1

    @property
    def anchor_window(self) -> int:
        if self.window_size_anchor is not None:
            return int(self.window_size_anchor)
        if self.insert_size is not None:
            return int(self.insert_size)
        return DEFAULT_INSERT_SIZE

    def validate(self) -> "MapperConfig":
        """Raise ConfigurationError for any invalid parameter; return self."""
        non_negative = {
            "window_size_junction": self.window_size_junction,
            "junction_clip_slack": self.junction_clip_slack,
            "min_anchor_support": self.min_anchor_support,
            "family_ambiguity_margin": self.family_ambiguity_margin,
            "max_tsd_length": self.max_tsd_length,
        }
        if self.window_size_anchor is not None:
            non_negative["window_size_anchor"] = self.window_size_anchor
        for name, value in non_negative.items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")

        if not isinstance(self.min_junction_clip, int) or self.min_junction_clip < 1:
            raise ConfigurationError(
                f"min_junction_clip must be a positive integer, got {self.min_junction_clip!r}"
            )
        if self.insert_size is not None and (
            not isinstance(self.insert_size, int) or self.insert_size <= 0
        ):
            raise ConfigurationError(f"insert_size must be > 0, got {self.insert_size!r}")
        for name in ("min_te_length_fraction", "max_te_length_fraction"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive number, got {value!r}")
        if self.min_te_length_fraction > self.max_te_length_fraction:
            raise ConfigurationError(
                "min_te_length_fraction must not exceed max_te_length_fraction "
                f"({self.min_te_length_fraction} > {self.max_te_length_fraction})"
            )
        if not isinstance(self.workers, int) or self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers!r}")
        return self

    def with_insert_size(self, insert_size: Optional[int]) -> "MapperConfig":
        """Return a copy using ``insert_size`` unless one is already set."""
        if insert_size is None or self.insert_size is not None:
            return self
        return replace(self, insert_size=int(insert_size))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["anchor_window"] = self.anchor_window
        return d

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "MapperConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        return cls(**{k: v for k, v in values.items() if v is not None}).validate()


def load_config(
    path: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> MapperConfig:
    """Build a validated config from an optional JSON file plus overrides.

    Values in ``overrides`` that are None are ignored, so argparse defaults of
    None leave file values (or dataclass defaults) in place.
    """
    values: Dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "rt", encoding="utf-8") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        values.update(loaded)
        logger.info("Loaded configuration from %s", path)
    for k, v in (overrides or {}).items():
        if v is not None:
            values[k] = v
    return MapperConfig.from_mapping(values)
