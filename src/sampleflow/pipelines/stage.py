"""
Base Stage descriptor for streaming pipelines.

Philosophy:
- A Stage is an immutable description of a sequence of elements
- Iterators are created from a Stage, one per traversal
- Iterators own their upstream iterators and their own mutable state
- Any object offering get_next/save/restore can act as an upstream
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import torch

from sampleflow.pipelines.context import CheckpointContext


INFINITE_CARDINALITY = -1
UNKNOWN_CARDINALITY = -2

ROOT_PREFIX = "Iterator"
PREFIX_DELIMITER = "::"

Shape = Tuple[Optional[int], ...]


def iterator_prefix(stage_type: str, parent_prefix: str) -> str:
    """Prefix for an iterator of ``stage_type`` created under ``parent_prefix``."""
    return f"{parent_prefix}{PREFIX_DELIMITER}{stage_type}"


@runtime_checkable
class StageIterator(Protocol):
    """Capabilities a stage iterator offers to whoever consumes it.

    ``get_next`` returns the next element or raises ``StopIteration`` once
    the sequence is exhausted.
    """

    prefix: str

    def get_next(self) -> Any:
        ...

    def save(self, writer: CheckpointContext) -> None:
        ...

    def restore(self, reader: CheckpointContext) -> None:
        ...


@dataclass
class StageConfig:
    """Configuration for a pipeline stage."""

    name: str
    """Declared node name of this stage."""

    params: Dict[str, Any] = field(default_factory=dict)
    """Stage-specific parameters."""


class Stage(ABC):
    """
    Base class for all stage descriptors.

    A Stage describes a sequence of elements:
    - What the elements look like (dtypes, shapes)
    - How many there will be (cardinality)
    - How to walk them (make_iterator)

    Stages never hold traversal state. Every call to ``make_iterator``
    returns an independent iterator.

    Example:
        >>> stage = RangeStage(StageConfig(name='range'), start=0, stop=3)
        >>> it = stage.make_iterator()
        >>> [int(x) for x in it]
        [0, 1, 2]
    """

    stage_type: str = "Base"

    def __init__(self, config: StageConfig):
        """
        Initialize stage with configuration.

        Args:
            config: Stage configuration including name and params.
        """
        self.config = config

    @property
    def name(self) -> str:
        """Get declared node name."""
        return self.config.name

    def type_string(self) -> str:
        """Human-readable stage type identifier, e.g. ``SamplingStage``."""
        return f"{self.stage_type}Stage"

    def iterator_prefix(self, parent_prefix: str = ROOT_PREFIX) -> str:
        """Checkpoint-key prefix of iterators created under ``parent_prefix``."""
        return iterator_prefix(self.stage_type, parent_prefix)

    @property
    @abstractmethod
    def output_dtypes(self) -> Tuple[torch.dtype, ...]:
        """Dtype of each element component."""

    @property
    @abstractmethod
    def output_shapes(self) -> Tuple[Shape, ...]:
        """Shape of each element component; ``None`` marks an unknown dimension."""

    @abstractmethod
    def cardinality(self) -> int:
        """
        Number of elements this stage will produce.

        Returns:
            A non-negative count, ``INFINITE_CARDINALITY`` or ``UNKNOWN_CARDINALITY``.
        """

    @abstractmethod
    def make_iterator(self, parent_prefix: str = ROOT_PREFIX) -> StageIterator:
        """
        Create a fresh iterator over this stage.

        Args:
            parent_prefix: Prefix of the owning iterator (or the root prefix).

        Returns:
            A new iterator positioned at the start of the sequence.
        """

    def input_stages(self) -> List[Stage]:
        """Stages this stage reads from."""
        return []

    def debug_string(self) -> str:
        return f"{self.type_string()}::{self.name}"

    def __repr__(self) -> str:
        """String representation of stage."""
        return f"{self.__class__.__name__}(name='{self.name}', cardinality={self.cardinality()})"
