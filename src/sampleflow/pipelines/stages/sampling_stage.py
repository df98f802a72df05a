"""
Bernoulli sampling stage.

Each upstream element is kept independently with probability ``rate``.
Decisions come from a Philox stream seeded by ``(seed, seed2)``: the n-th
upstream element examined by an iterator is judged by the n-th draw of
that stream, so the output depends only on the seeds, the rate and the
upstream sequence. Checkpoints record how many draws were consumed, which
lets a restored iterator continue the stream exactly where it stopped.
"""

from __future__ import annotations

import logging
import math
import numbers
import threading
from typing import Any, List, Optional

import numpy as np

from sampleflow.common.philox import PhiloxRandom
from sampleflow.pipelines.context import CheckpointContext, CheckpointError, full_name
from sampleflow.pipelines.stage import (
    ROOT_PREFIX,
    UNKNOWN_CARDINALITY,
    Stage,
    StageConfig,
    StageIterator,
)

logger = logging.getLogger(__name__)

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

NUM_RANDOM_SAMPLES = "num_random_samples"
SEED = "seed"
SEED2 = "seed2"
INPUT_IMPL_EMPTY = "input_impl_empty"


def _as_int64(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ValueError(f"{name} must be an integer, got: {value!r}")
    value = int(value)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"{name} must fit in int64, got: {value}")
    return value


def _as_rate(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError(f"rate must be a number, got: {value!r}")
    rate = float(value)
    # 0.0 is accepted and yields an always-empty stage.
    if not math.isfinite(rate) or not (0.0 <= rate <= 1.0):
        raise ValueError(f"rate must be in [0, 1], got: {rate}")
    # Decisions compare float32 draws against a float32 rate.
    return float(np.float32(rate))


class SamplingStage(Stage):
    """
    Keeps each element of ``input_stage`` with probability ``rate``.

    Output dtypes and shapes are those of the input stage. The number of
    output elements depends on the random trials, so the cardinality is
    always reported as unknown, even for rate 1.0.

    Example:
        >>> source = RangeStage(StageConfig(name='range'), start=0, stop=20)
        >>> stage = SamplingStage(
        ...     StageConfig(name='sampling_stage'),
        ...     input_stage=source,
        ...     rate=0.1,
        ...     seed=42,
        ...     seed2=7,
        ... )
        >>> [int(x) for x in stage.make_iterator()]
        [9, 11, 19]
    """

    stage_type = "Sampling"

    def __init__(
        self,
        config: StageConfig,
        *,
        input_stage: Stage,
        rate: float,
        seed: int,
        seed2: int,
    ) -> None:
        """
        Args:
            config: Stage configuration (declared name).
            input_stage: Upstream stage to sample from.
            rate: Probability of keeping each element, in [0, 1].
            seed: First half of the Philox seed (int64).
            seed2: Second half of the Philox seed (int64).

        Raises:
            ValueError: If rate or seeds are out of range.
        """
        super().__init__(config)
        self._input_stage = input_stage
        self._rate = _as_rate(rate)
        self._seed = _as_int64(seed, "seed")
        self._seed2 = _as_int64(seed2, "seed2")

    @classmethod
    def from_config(cls, config: StageConfig, *, input_stage: Stage) -> SamplingStage:
        """Build from ``config.params`` holding ``rate``, ``seed`` and ``seed2``."""
        missing = [k for k in ("rate", "seed", "seed2") if k not in config.params]
        if missing:
            raise ValueError(f"Stage '{config.name}' missing required params: {missing}")
        return cls(
            config,
            input_stage=input_stage,
            rate=config.params["rate"],
            seed=config.params["seed"],
            seed2=config.params["seed2"],
        )

    @property
    def input_stage(self) -> Stage:
        return self._input_stage

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def seed2(self) -> int:
        return self._seed2

    @property
    def output_dtypes(self):
        return self._input_stage.output_dtypes

    @property
    def output_shapes(self):
        return self._input_stage.output_shapes

    def cardinality(self) -> int:
        return UNKNOWN_CARDINALITY

    def input_stages(self) -> List[Stage]:
        return [self._input_stage]

    def make_iterator(self, parent_prefix: str = ROOT_PREFIX) -> SamplingIterator:
        return SamplingIterator(self, self.iterator_prefix(parent_prefix))


class SamplingIterator:
    """
    Iterator over a SamplingStage.

    Owns one upstream iterator and one PhiloxRandom. Every upstream element
    examined consumes exactly one draw, so ``draw_count`` always equals the
    number of upstream elements pulled. Pulls, saves and restores hold the
    same lock, keeping the two positions in step.
    """

    def __init__(self, stage: SamplingStage, prefix: str) -> None:
        self.stage = stage
        self.prefix = prefix
        self._rng = PhiloxRandom(stage.seed, stage.seed2)
        self._input_impl: Optional[StageIterator] = stage.input_stage.make_iterator(prefix)
        self._lock = threading.Lock()

    @property
    def output_dtypes(self):
        return self.stage.output_dtypes

    @property
    def output_shapes(self):
        return self.stage.output_shapes

    @property
    def draw_count(self) -> int:
        return self._rng.draw_count

    def get_next(self) -> Any:
        """
        Return the next element that passes its Bernoulli trial.

        Pulls and discards upstream elements until one passes. With rate 0
        this walks the whole upstream before ending.

        Raises:
            StopIteration: When upstream is exhausted.
        """
        with self._lock:
            while True:
                if self._input_impl is None:
                    raise StopIteration
                try:
                    element = self._input_impl.get_next()
                except StopIteration:
                    logger.debug(f"'{self.prefix}' reached end of input after {self._rng.draw_count} draws")
                    self._input_impl = None
                    raise
                if self._rng.next() < self.stage.rate:
                    return element

    def save(self, writer: CheckpointContext) -> None:
        """
        Write draw count, seeds and upstream state into ``writer``.

        Args:
            writer: Checkpoint context to write into.
        """
        with self._lock:
            draw_count = self._rng.draw_count
            writer.write_scalar(full_name(self.prefix, NUM_RANDOM_SAMPLES), draw_count)
            writer.write_scalar(full_name(self.prefix, SEED), self._rng.seed)
            writer.write_scalar(full_name(self.prefix, SEED2), self._rng.seed2)
            if self._input_impl is None:
                writer.write_scalar(full_name(self.prefix, INPUT_IMPL_EMPTY), "")
            else:
                self._input_impl.save(writer)
        logger.debug(f"Saved '{self.prefix}' at {NUM_RANDOM_SAMPLES}={draw_count}")

    def restore(self, reader: CheckpointContext) -> None:
        """
        Reposition this iterator from a checkpoint.

        The random stream is moved to the saved draw count without redrawing,
        and a fresh upstream iterator restores itself from the same reader.
        On failure the iterator is left unchanged.

        Args:
            reader: Checkpoint context written by ``save``.

        Raises:
            CheckpointError: If a required entry is missing or invalid.
        """
        draw_count = reader.read_int(full_name(self.prefix, NUM_RANDOM_SAMPLES))
        if draw_count < 0:
            raise CheckpointError(f"'{self.prefix}' has negative {NUM_RANDOM_SAMPLES}: {draw_count}")
        try:
            seed = _as_int64(reader.read_int(full_name(self.prefix, SEED)), SEED)
            seed2 = _as_int64(reader.read_int(full_name(self.prefix, SEED2)), SEED2)
        except ValueError as e:
            raise CheckpointError(f"'{self.prefix}' has invalid seeds: {e}") from e
        rng = PhiloxRandom(seed, seed2, draw_count=draw_count)

        if reader.contains(full_name(self.prefix, INPUT_IMPL_EMPTY)):
            input_impl = None
        else:
            input_impl = self.stage.input_stage.make_iterator(self.prefix)
            input_impl.restore(reader)

        with self._lock:
            self._rng = rng
            self._input_impl = input_impl
        logger.debug(f"Restored '{self.prefix}' at {NUM_RANDOM_SAMPLES}={draw_count}")

    def __iter__(self) -> SamplingIterator:
        return self

    def __next__(self) -> Any:
        return self.get_next()
