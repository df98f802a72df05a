from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import Any

import torch

from sampleflow.pipelines.context import CheckpointContext, CheckpointError, full_name
from sampleflow.pipelines.stage import ROOT_PREFIX, Shape, Stage, StageConfig

logger = logging.getLogger(__name__)


class SequenceStage(Stage):
    """Replays an in-memory sequence of elements in order."""

    stage_type = "Sequence"

    def __init__(
        self,
        config: StageConfig,
        *,
        elements: Sequence[Any],
        dtype: torch.dtype = torch.int64,
        shape: Shape = (),
    ) -> None:
        super().__init__(config)
        self.elements = tuple(elements)
        self._dtype = dtype
        self._shape = tuple(shape)

    @property
    def output_dtypes(self):
        return (self._dtype,)

    @property
    def output_shapes(self):
        return (self._shape,)

    def cardinality(self) -> int:
        return len(self.elements)

    def make_iterator(self, parent_prefix: str = ROOT_PREFIX) -> SequenceIterator:
        return SequenceIterator(self, self.iterator_prefix(parent_prefix))


class SequenceIterator:
    """Iterator over a SequenceStage. Checkpoints the index of the next element."""

    def __init__(self, stage: SequenceStage, prefix: str) -> None:
        self.stage = stage
        self.prefix = prefix
        self._index = 0
        self._lock = threading.Lock()

    @property
    def output_dtypes(self):
        return self.stage.output_dtypes

    @property
    def output_shapes(self):
        return self.stage.output_shapes

    def get_next(self) -> Any:
        with self._lock:
            if self._index >= len(self.stage.elements):
                raise StopIteration
            element = self.stage.elements[self._index]
            self._index += 1
        return element

    def save(self, writer: CheckpointContext) -> None:
        with self._lock:
            writer.write_scalar(full_name(self.prefix, "index"), self._index)

    def restore(self, reader: CheckpointContext) -> None:
        index = reader.read_int(full_name(self.prefix, "index"))
        if not 0 <= index <= len(self.stage.elements):
            raise CheckpointError(
                f"Checkpoint index {index} for '{self.prefix}' is outside [0, {len(self.stage.elements)}]"
            )
        with self._lock:
            self._index = index
        logger.debug(f"Restored '{self.prefix}' at index={index}")

    def __iter__(self) -> SequenceIterator:
        return self

    def __next__(self) -> Any:
        return self.get_next()
