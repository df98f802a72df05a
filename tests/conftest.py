"""
Pytest configuration and shared fixtures.
"""

import pytest

from sampleflow.pipelines import StageConfig
from sampleflow.pipelines.stages import RangeStage, SamplingStage

RANDOM_SEED = 42
RANDOM_SEED2 = 7
NODE_NAME = "sampling_stage"


def make_sampling_stage(rate, stop, *, seed=RANDOM_SEED, seed2=RANDOM_SEED2, name=NODE_NAME):
    source = RangeStage(StageConfig(name="range"), start=0, stop=stop, step=1)
    return SamplingStage(StageConfig(name=name), input_stage=source, rate=rate, seed=seed, seed2=seed2)


@pytest.fixture
def one_hundred_percent_stage():
    """Rate 1.0 over range(0, 3)."""
    return make_sampling_stage(1.0, 3)


@pytest.fixture
def ten_percent_stage():
    """Rate 0.1 over range(0, 20)."""
    return make_sampling_stage(0.1, 20)


@pytest.fixture
def zero_percent_stage():
    """Rate 0.0 over range(0, 20)."""
    return make_sampling_stage(0.0, 20)


@pytest.fixture
def sampling_stage_factory():
    """Build a sampling stage over range(0, stop) with the default seeds."""
    return make_sampling_stage
