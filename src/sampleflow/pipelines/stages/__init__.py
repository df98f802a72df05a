from .range_stage import RangeIterator, RangeStage
from .sampling_stage import SamplingIterator, SamplingStage
from .sequence_stage import SequenceIterator, SequenceStage

__all__ = [
    "RangeIterator",
    "RangeStage",
    "SamplingIterator",
    "SamplingStage",
    "SequenceIterator",
    "SequenceStage",
]
