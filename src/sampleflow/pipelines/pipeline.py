"""
Linear pipeline driver.

A Pipeline wraps the terminal stage of a chain of stages and drives a root
iterator over it, with checkpoint and resume support.
"""

from __future__ import annotations

from typing import Any, List, Optional
import logging

from sampleflow.pipelines.context import CheckpointContext
from sampleflow.pipelines.stage import ROOT_PREFIX, Stage, StageIterator


logger = logging.getLogger(__name__)


class Pipeline:
    """
    Driver for a chain of stages ending in ``stage``.

    Example:
        >>> from sampleflow.pipelines import Pipeline, StageConfig
        >>> from sampleflow.pipelines.stages import RangeStage, SamplingStage
        >>>
        >>> source = RangeStage(StageConfig(name='range'), start=0, stop=20)
        >>> sampled = SamplingStage(
        ...     StageConfig(name='sampling'), input_stage=source, rate=0.1, seed=42, seed2=7,
        ... )
        >>> pipeline = Pipeline(sampled)
        >>> [int(x) for x in pipeline.run()]
        [9, 11, 19]
    """

    def __init__(self, stage: Stage, name: str = "pipeline", validate: bool = True):
        """
        Initialize pipeline.

        Args:
            stage: Terminal stage of the chain.
            name: Pipeline name for logging.
            validate: Whether to validate the chain.

        Raises:
            ValueError: If validation fails (duplicate stage names).
        """
        self.name = name
        self.stage = stage

        if validate:
            self.validate()

    def stages(self) -> List[Stage]:
        """
        All stages of the chain, sources first.

        Returns:
            List of stages in dependency order.
        """
        order: List[Stage] = []
        seen = set()

        def visit(stage: Stage) -> None:
            if id(stage) in seen:
                return
            seen.add(id(stage))
            for upstream in stage.input_stages():
                visit(upstream)
            order.append(stage)

        visit(self.stage)
        return order

    def validate(self) -> None:
        """
        Validate the chain.

        Raises:
            ValueError: If two stages share a declared name.
        """
        names = [s.name for s in self.stages()]
        duplicates = [name for name in names if names.count(name) > 1]
        if duplicates:
            raise ValueError(f"Duplicate stage names: {set(duplicates)}")

    def iterator(self) -> StageIterator:
        """Create a fresh root iterator."""
        return self.stage.make_iterator(ROOT_PREFIX)

    def run(self, iterator: Optional[StageIterator] = None, max_elements: Optional[int] = None) -> List[Any]:
        """
        Pull elements until end of sequence or ``max_elements``.

        Args:
            iterator: Iterator to continue (a fresh one if None).
            max_elements: Stop after this many elements.

        Returns:
            The elements pulled, in order.

        Raises:
            Exception: Any exception raised by the iterator.
        """
        if iterator is None:
            iterator = self.iterator()
        if max_elements is not None and max_elements < 0:
            raise ValueError(f"max_elements must be non-negative, got: {max_elements}")

        logger.info(f"Starting pipeline '{self.name}' at '{self.stage.debug_string()}'")

        elements: List[Any] = []
        try:
            while max_elements is None or len(elements) < max_elements:
                try:
                    elements.append(iterator.get_next())
                except StopIteration:
                    logger.info(f"Pipeline '{self.name}' reached end of sequence")
                    break
        except Exception as e:
            logger.error(f"Pipeline '{self.name}' failed after {len(elements)} elements: {e}")
            raise

        logger.info(f"Pipeline '{self.name}' produced {len(elements)} elements")
        return elements

    def save(self, iterator: StageIterator, context: Optional[CheckpointContext] = None) -> CheckpointContext:
        """
        Checkpoint a root iterator.

        Args:
            iterator: Iterator to checkpoint.
            context: Context to write into (created if None).

        Returns:
            The context holding the checkpoint.
        """
        if context is None:
            context = CheckpointContext()
        iterator.save(context)
        logger.info(f"Checkpointed pipeline '{self.name}' ({len(context)} entries)")
        return context

    def resume(self, context: CheckpointContext) -> StageIterator:
        """
        Build a root iterator restored from ``context``.

        Raises:
            CheckpointError: If the checkpoint is incomplete.
        """
        iterator = self.iterator()
        iterator.restore(context)
        logger.info(f"Resumed pipeline '{self.name}' from checkpoint")
        return iterator

    def visualize(self) -> str:
        """
        Create a text visualization of the chain.

        Returns:
            String representation of the pipeline.
        """
        lines = [f"Pipeline: {self.name}", "=" * 50]

        for i, stage in enumerate(self.stages(), 1):
            lines.append(f"\n{i}. {stage.debug_string()}")
            lines.append(f"   Dtypes: {', '.join(str(d) for d in stage.output_dtypes)}")
            lines.append(f"   Shapes: {', '.join(str(s) for s in stage.output_shapes)}")

        return "\n".join(lines)

    def get_stage(self, name: str) -> Optional[Stage]:
        """
        Get stage by name.

        Args:
            name: Stage name.

        Returns:
            Stage instance or None if not found.
        """
        for stage in self.stages():
            if stage.name == name:
                return stage
        return None

    def __repr__(self) -> str:
        """String representation."""
        return f"Pipeline(name='{self.name}', stages={len(self.stages())})"
