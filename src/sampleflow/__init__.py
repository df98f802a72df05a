"""
sampleflow: Deterministic, checkpointable sampling for streaming pipelines.

This package provides a Bernoulli sampling stage driven by a counter-based
Philox generator, together with the stage, iterator and checkpoint
machinery needed to pause and resume a traversal exactly.
"""

__version__ = "0.1.0"

from sampleflow import common, config, pipelines

__all__ = [
    "common",
    "config",
    "pipelines",
    "__version__",
]
