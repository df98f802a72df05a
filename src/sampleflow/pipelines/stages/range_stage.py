from __future__ import annotations

import logging
import math
import threading

import torch

from sampleflow.pipelines.context import CheckpointContext, full_name
from sampleflow.pipelines.stage import ROOT_PREFIX, Stage, StageConfig

logger = logging.getLogger(__name__)


class RangeStage(Stage):
    """Arithmetic progression of int64 scalar tensors, like ``range(start, stop, step)``."""

    stage_type = "Range"

    def __init__(self, config: StageConfig, *, start: int = 0, stop: int, step: int = 1) -> None:
        super().__init__(config)
        if int(step) == 0:
            raise ValueError("step must be a non-zero integer")
        self.start = int(start)
        self.stop = int(stop)
        self.step = int(step)

    @property
    def output_dtypes(self):
        return (torch.int64,)

    @property
    def output_shapes(self):
        return ((),)

    def cardinality(self) -> int:
        if self.step > 0:
            return max(0, math.ceil((self.stop - self.start) / self.step))
        return max(0, math.ceil((self.start - self.stop) / -self.step))

    def make_iterator(self, parent_prefix: str = ROOT_PREFIX) -> RangeIterator:
        return RangeIterator(self, self.iterator_prefix(parent_prefix))


class RangeIterator:
    """Iterator over a RangeStage. Checkpoints the next value to emit."""

    def __init__(self, stage: RangeStage, prefix: str) -> None:
        self.stage = stage
        self.prefix = prefix
        self._next = stage.start
        self._lock = threading.Lock()

    @property
    def output_dtypes(self):
        return self.stage.output_dtypes

    @property
    def output_shapes(self):
        return self.stage.output_shapes

    def _exhausted(self) -> bool:
        if self.stage.step > 0:
            return self._next >= self.stage.stop
        return self._next <= self.stage.stop

    def get_next(self) -> torch.Tensor:
        with self._lock:
            if self._exhausted():
                raise StopIteration
            value = self._next
            self._next += self.stage.step
        return torch.tensor(value, dtype=torch.int64)

    def save(self, writer: CheckpointContext) -> None:
        with self._lock:
            writer.write_scalar(full_name(self.prefix, "next"), self._next)

    def restore(self, reader: CheckpointContext) -> None:
        with self._lock:
            self._next = reader.read_int(full_name(self.prefix, "next"))
        logger.debug(f"Restored '{self.prefix}' at next={self._next}")

    def __iter__(self) -> RangeIterator:
        return self

    def __next__(self) -> torch.Tensor:
        return self.get_next()
