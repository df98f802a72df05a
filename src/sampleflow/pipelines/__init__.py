"""
Stage framework for checkpointable streaming pipelines.

This module implements a pull-based pipeline system where:
- Stages are immutable descriptions of element sequences
- Iterators walk a stage one element at a time
- Iterators can be checkpointed into a CheckpointContext and resumed
- Any object offering get_next/save/restore can feed a stage

Philosophy:
- Deterministic: same parameters and inputs give the same outputs
- Resumable: a restored iterator continues exactly where it stopped
- Transparent: stages pass element contents through untouched
"""

from sampleflow.pipelines.stage import (
    INFINITE_CARDINALITY,
    ROOT_PREFIX,
    UNKNOWN_CARDINALITY,
    Stage,
    StageConfig,
    StageIterator,
)
from sampleflow.pipelines.context import CheckpointContext, CheckpointError
from sampleflow.pipelines.pipeline import Pipeline

__all__ = [
    "INFINITE_CARDINALITY",
    "ROOT_PREFIX",
    "UNKNOWN_CARDINALITY",
    "Stage",
    "StageConfig",
    "StageIterator",
    "CheckpointContext",
    "CheckpointError",
    "Pipeline",
]
