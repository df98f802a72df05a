"""
Configuration for sampling stages.

A sampling configuration is a small JSON document:

    {"name": "sampling_stage", "rate": 0.1, "seed": 42, "seed2": 7}
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict

from sampleflow.pipelines.stage import StageConfig
from sampleflow.pipelines.stages.sampling_stage import INT64_MAX, INT64_MIN


@dataclass(frozen=True)
class SamplingConfig:
    """Parameters of a sampling stage."""

    rate: float
    """Probability of keeping each element, in [0, 1]."""

    seed: int = 0
    """First half of the Philox seed."""

    seed2: int = 0
    """Second half of the Philox seed."""

    name: str = "sampling_stage"
    """Declared node name of the stage."""

    def __post_init__(self) -> None:
        if isinstance(self.rate, bool) or not isinstance(self.rate, (int, float)):
            raise ValueError(f"rate must be a number, got: {self.rate!r}")
        if not 0.0 <= float(self.rate) <= 1.0:
            raise ValueError(f"rate must be in [0, 1], got: {self.rate}")
        for key in ("seed", "seed2"):
            value = getattr(self, key)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{key} must be an integer, got: {value!r}")
            if not INT64_MIN <= value <= INT64_MAX:
                raise ValueError(f"{key} must fit in int64, got: {value}")
        if not self.name:
            raise ValueError("name must be a non-empty string")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SamplingConfig:
        unknown = sorted(set(data) - {"rate", "seed", "seed2", "name"})
        if unknown:
            raise ValueError(f"Unknown sampling config keys: {unknown}")
        if "rate" not in data:
            raise ValueError("Sampling config requires 'rate'")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def stage_config(self) -> StageConfig:
        return StageConfig(name=self.name, params={"rate": self.rate, "seed": self.seed, "seed2": self.seed2})


def load_config(path: str | Path) -> SamplingConfig:
    """
    Load a sampling configuration from a JSON file.

    Args:
        path: Path to a JSON object with rate/seed/seed2/name.

    Returns:
        Parsed SamplingConfig.

    Raises:
        ValueError: If the file is not valid JSON or holds invalid values.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return SamplingConfig.from_dict(data)


__all__ = ["SamplingConfig", "load_config"]
