"""
Tests for the Bernoulli sampling stage.
"""

import math
import threading

import numpy as np
import pytest
import torch

from sampleflow.pipelines import (
    UNKNOWN_CARDINALITY,
    CheckpointContext,
    CheckpointError,
    StageConfig,
    StageIterator,
)
from sampleflow.pipelines.stage import Stage
from sampleflow.pipelines.stages import RangeStage, SamplingStage, SequenceStage


def _drain(iterator):
    return [int(x) for x in iterator]


def _outputs_with_breakpoints(stage, breakpoints):
    """Pull elements, checkpointing into a fresh iterator at each breakpoint."""
    iterator = stage.make_iterator()
    outputs = []
    cur_iteration = 0
    for breakpoint in breakpoints:
        while cur_iteration < breakpoint:
            try:
                outputs.append(int(iterator.get_next()))
            except StopIteration:
                pass
            cur_iteration += 1
        ctx = CheckpointContext()
        iterator.save(ctx)
        iterator = stage.make_iterator()
        iterator.restore(ctx)
    outputs.extend(_drain(iterator))
    return outputs


class FailingStage(Stage):
    """Upstream that raises after yielding ``fail_after`` elements."""

    stage_type = "Failing"

    def __init__(self, config, fail_after):
        super().__init__(config)
        self.fail_after = fail_after

    @property
    def output_dtypes(self):
        return (torch.int64,)

    @property
    def output_shapes(self):
        return ((),)

    def cardinality(self):
        return UNKNOWN_CARDINALITY

    def make_iterator(self, parent_prefix="Iterator"):
        return FailingIterator(self.iterator_prefix(parent_prefix), self.fail_after)


class FailingIterator:
    """Duck-typed upstream iterator; not derived from any base class."""

    def __init__(self, prefix, fail_after):
        self.prefix = prefix
        self.fail_after = fail_after
        self.pulled = 0

    def get_next(self):
        if self.pulled >= self.fail_after:
            raise IOError("upstream read failed")
        self.pulled += 1
        return torch.tensor(self.pulled - 1)

    def save(self, writer):
        writer.write_scalar(f"{self.prefix}:pulled", self.pulled)

    def restore(self, reader):
        self.pulled = reader.read_int(f"{self.prefix}:pulled")


class TestSamplingStage:
    """Tests for SamplingStage metadata and validation."""

    def test_node_name(self, ten_percent_stage):
        assert ten_percent_stage.name == "sampling_stage"

    def test_type_string(self, ten_percent_stage):
        assert ten_percent_stage.type_string() == "SamplingStage"
        assert ten_percent_stage.debug_string() == "SamplingStage::sampling_stage"

    def test_output_dtypes_mirror_input(self, ten_percent_stage):
        assert ten_percent_stage.output_dtypes == (torch.int64,)
        assert ten_percent_stage.output_dtypes == ten_percent_stage.input_stage.output_dtypes

    def test_output_shapes_mirror_input(self, ten_percent_stage):
        assert ten_percent_stage.output_shapes == ((),)

    def test_metadata_mirrors_other_inputs(self):
        source = SequenceStage(
            StageConfig(name="vectors"),
            elements=[torch.zeros(3), torch.ones(3)],
            dtype=torch.float32,
            shape=(3,),
        )
        stage = SamplingStage(StageConfig(name="s"), input_stage=source, rate=0.5, seed=1, seed2=2)
        assert stage.output_dtypes == (torch.float32,)
        assert stage.output_shapes == ((3,),)

    @pytest.mark.parametrize("rate", [1.0, 0.1, 0.0])
    def test_cardinality_is_unknown(self, sampling_stage_factory, rate):
        stage = sampling_stage_factory(rate, 20)
        assert stage.input_stage.cardinality() == 20
        assert stage.cardinality() == UNKNOWN_CARDINALITY

    def test_iterator_prefix(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        assert ten_percent_stage.iterator_prefix() == "Iterator::Sampling"
        assert iterator.prefix == "Iterator::Sampling"
        assert iterator.output_dtypes == (torch.int64,)
        assert iterator.output_shapes == ((),)

    def test_iterator_satisfies_protocol(self, ten_percent_stage):
        assert isinstance(ten_percent_stage.make_iterator(), StageIterator)

    def test_rate_is_rounded_to_float32(self, ten_percent_stage):
        assert ten_percent_stage.rate == float(np.float32(0.1))

    @pytest.mark.parametrize("rate", [-0.1, 1.5, math.nan, math.inf, "0.5", True, None])
    def test_invalid_rate_rejected(self, sampling_stage_factory, rate):
        with pytest.raises(ValueError, match="rate"):
            sampling_stage_factory(rate, 3)

    @pytest.mark.parametrize("seed", [1 << 63, -(1 << 63) - 1, 1.5, "42"])
    def test_invalid_seed_rejected(self, sampling_stage_factory, seed):
        with pytest.raises(ValueError, match="seed"):
            sampling_stage_factory(0.5, 3, seed=seed)

    def test_extreme_seeds_accepted(self, sampling_stage_factory):
        stage = sampling_stage_factory(1.0, 3, seed=-(1 << 63), seed2=(1 << 63) - 1)
        assert _drain(stage.make_iterator()) == [0, 1, 2]

    def test_from_config(self):
        source = RangeStage(StageConfig(name="range"), stop=20)
        config = StageConfig(name="sampled", params={"rate": 0.1, "seed": 42, "seed2": 7})
        stage = SamplingStage.from_config(config, input_stage=source)
        assert stage.seed == 42
        assert stage.seed2 == 7
        assert _drain(stage.make_iterator()) == [9, 11, 19]

    def test_from_config_missing_params(self):
        source = RangeStage(StageConfig(name="range"), stop=20)
        with pytest.raises(ValueError, match="missing required params"):
            SamplingStage.from_config(StageConfig(name="sampled", params={"rate": 0.1}), input_stage=source)


class TestSamplingIterator:
    """Tests for pulling elements through a sampling iterator."""

    def test_one_hundred_percent(self, one_hundred_percent_stage):
        assert _drain(one_hundred_percent_stage.make_iterator()) == [0, 1, 2]

    def test_ten_percent(self, ten_percent_stage):
        assert _drain(ten_percent_stage.make_iterator()) == [9, 11, 19]

    def test_zero_percent(self, zero_percent_stage):
        assert _drain(zero_percent_stage.make_iterator()) == []

    def test_deterministic_across_runs(self, sampling_stage_factory):
        first = _drain(sampling_stage_factory(0.5, 200).make_iterator())
        second = _drain(sampling_stage_factory(0.5, 200).make_iterator())
        assert first == second
        assert 0 < len(first) < 200

    def test_seeds_change_output(self, sampling_stage_factory):
        a = _drain(sampling_stage_factory(0.5, 200, seed=1, seed2=2).make_iterator())
        b = _drain(sampling_stage_factory(0.5, 200, seed=3, seed2=4).make_iterator())
        assert a != b

    def test_one_draw_per_examined_element(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        assert int(iterator.get_next()) == 9
        assert iterator.draw_count == 10
        assert int(iterator.get_next()) == 11
        assert iterator.draw_count == 12

    def test_rate_one_still_consumes_draws(self, one_hundred_percent_stage):
        iterator = one_hundred_percent_stage.make_iterator()
        iterator.get_next()
        iterator.get_next()
        assert iterator.draw_count == 2

    def test_zero_percent_walks_whole_input(self, zero_percent_stage):
        iterator = zero_percent_stage.make_iterator()
        with pytest.raises(StopIteration):
            iterator.get_next()
        assert iterator.draw_count == 20

    def test_end_of_sequence_is_sticky(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        _drain(iterator)
        assert iterator.draw_count == 20
        for _ in range(3):
            with pytest.raises(StopIteration):
                iterator.get_next()
        assert iterator.draw_count == 20

    def test_elements_pass_through_untouched(self):
        elements = [{"id": i} for i in range(10)]
        source = SequenceStage(StageConfig(name="records"), elements=elements)
        stage = SamplingStage(StageConfig(name="s"), input_stage=source, rate=1.0, seed=5, seed2=6)
        out = list(stage.make_iterator())
        assert all(a is b for a, b in zip(out, elements))
        assert len(out) == len(elements)

    def test_upstream_errors_propagate(self):
        source = FailingStage(StageConfig(name="failing"), fail_after=3)
        stage = SamplingStage(StageConfig(name="s"), input_stage=source, rate=1.0, seed=1, seed2=1)
        iterator = stage.make_iterator()
        assert _drain_until_error(iterator) == [0, 1, 2]
        assert iterator.draw_count == 3

    def test_independent_iterators(self, ten_percent_stage):
        a = ten_percent_stage.make_iterator()
        b = ten_percent_stage.make_iterator()
        assert int(a.get_next()) == 9
        assert _drain(b) == [9, 11, 19]
        assert _drain(a) == [11, 19]

    def test_nested_sampling(self, sampling_stage_factory):
        inner = sampling_stage_factory(0.5, 100)
        outer = SamplingStage(StageConfig(name="outer"), input_stage=inner, rate=0.5, seed=9, seed2=9)
        inner_out = _drain(inner.make_iterator())
        outer_out = _drain(outer.make_iterator())
        assert set(outer_out) <= set(inner_out)
        assert outer_out == sorted(outer_out)

    def test_concurrent_pulls_share_one_stream(self, sampling_stage_factory):
        """Threads draining one iterator see each decision exactly once."""
        stage = sampling_stage_factory(0.3, 20000)
        iterator = stage.make_iterator()
        results = [[] for _ in range(8)]

        def worker(out):
            while True:
                try:
                    out.append(int(iterator.get_next()))
                except StopIteration:
                    return

        threads = [threading.Thread(target=worker, args=(out,)) for out in results]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        combined = sorted(x for out in results for x in out)
        assert combined == _drain(stage.make_iterator())
        assert iterator.draw_count == 20000


def _drain_until_error(iterator):
    out = []
    with pytest.raises(IOError, match="upstream read failed"):
        while True:
            out.append(int(iterator.get_next()))
    return out


class TestSamplingCheckpoint:
    """Tests for save/restore of sampling iterators."""

    @pytest.mark.parametrize(
        "fixture_name, expected",
        [
            ("one_hundred_percent_stage", [0, 1, 2]),
            ("ten_percent_stage", [9, 11, 19]),
            ("zero_percent_stage", []),
        ],
    )
    def test_save_and_restore_breakpoints(self, request, fixture_name, expected):
        stage = request.getfixturevalue(fixture_name)
        assert _outputs_with_breakpoints(stage, [0, 2, 5]) == expected

    @pytest.mark.parametrize("breakpoints", [[1], [1, 1, 1], [3, 4], [0, 1, 2, 3, 10]])
    def test_restore_matches_uninterrupted(self, sampling_stage_factory, breakpoints):
        stage = sampling_stage_factory(0.3, 60)
        assert _outputs_with_breakpoints(stage, breakpoints) == _drain(stage.make_iterator())

    def test_checkpoint_entries(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        iterator.get_next()
        ctx = CheckpointContext()
        iterator.save(ctx)
        assert ctx.read_scalar("Iterator::Sampling:num_random_samples") == 10
        assert ctx.read_scalar("Iterator::Sampling:seed") == 42
        assert ctx.read_scalar("Iterator::Sampling:seed2") == 7
        assert ctx.read_scalar("Iterator::Sampling::Range:next") == 10
        assert "Iterator::Sampling:input_impl_empty" not in ctx

    def test_save_logs_saved_draw_count(self, ten_percent_stage, caplog):
        iterator = ten_percent_stage.make_iterator()
        iterator.get_next()
        ctx = CheckpointContext()
        with caplog.at_level("DEBUG", logger="sampleflow.pipelines.stages.sampling_stage"):
            iterator.save(ctx)
        saved = ctx.read_scalar("Iterator::Sampling:num_random_samples")
        assert f"num_random_samples={saved}" in caplog.text

    def test_checkpoint_after_end_of_input(self, zero_percent_stage):
        iterator = zero_percent_stage.make_iterator()
        _drain(iterator)
        ctx = CheckpointContext()
        iterator.save(ctx)
        assert ctx.read_scalar("Iterator::Sampling:num_random_samples") == 20
        assert "Iterator::Sampling:input_impl_empty" in ctx
        assert "Iterator::Sampling::Range:next" not in ctx

        restored = zero_percent_stage.make_iterator()
        restored.restore(ctx)
        assert restored.draw_count == 20
        with pytest.raises(StopIteration):
            restored.get_next()
        assert restored.draw_count == 20

    def test_restore_does_not_redraw(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        iterator.get_next()
        ctx = CheckpointContext()
        iterator.save(ctx)
        restored = ten_percent_stage.make_iterator()
        restored.restore(ctx)
        assert restored.draw_count == iterator.draw_count == 10

    def test_missing_draw_count_is_fatal(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        iterator.get_next()
        ctx = CheckpointContext()
        iterator.save(ctx)
        broken = CheckpointContext({k: v for k, v in ctx.items() if not k.endswith(":num_random_samples")})
        with pytest.raises(CheckpointError, match="num_random_samples"):
            ten_percent_stage.make_iterator().restore(broken)

    def test_missing_upstream_record_is_fatal(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        iterator.get_next()
        ctx = CheckpointContext()
        iterator.save(ctx)
        broken = CheckpointContext({k: v for k, v in ctx.items() if "::Range:" not in k})
        with pytest.raises(CheckpointError, match="Range:next"):
            ten_percent_stage.make_iterator().restore(broken)

    def test_malformed_draw_count_is_fatal(self, ten_percent_stage):
        ctx = CheckpointContext()
        ten_percent_stage.make_iterator().save(ctx)
        ctx["Iterator::Sampling:num_random_samples"] = "ten"
        with pytest.raises(CheckpointError, match="must be an int"):
            ten_percent_stage.make_iterator().restore(ctx)

    def test_negative_draw_count_is_fatal(self, ten_percent_stage):
        ctx = CheckpointContext()
        ten_percent_stage.make_iterator().save(ctx)
        ctx["Iterator::Sampling:num_random_samples"] = -1
        with pytest.raises(CheckpointError, match="negative"):
            ten_percent_stage.make_iterator().restore(ctx)

    def test_failed_restore_leaves_iterator_unchanged(self, ten_percent_stage):
        iterator = ten_percent_stage.make_iterator()
        assert int(iterator.get_next()) == 9
        with pytest.raises(CheckpointError):
            iterator.restore(CheckpointContext())
        assert iterator.draw_count == 10
        assert _drain(iterator) == [11, 19]

    def test_empty_checkpoint_is_fatal(self, ten_percent_stage):
        with pytest.raises(CheckpointError):
            ten_percent_stage.make_iterator().restore(CheckpointContext())

    def test_nested_stages_do_not_collide(self, sampling_stage_factory):
        inner = sampling_stage_factory(0.5, 100)
        outer = SamplingStage(StageConfig(name="outer"), input_stage=inner, rate=0.5, seed=9, seed2=9)
        iterator = outer.make_iterator()
        for _ in range(5):
            iterator.get_next()
        ctx = CheckpointContext()
        iterator.save(ctx)
        assert ctx.read_scalar("Iterator::Sampling:seed") == 9
        assert ctx.read_scalar("Iterator::Sampling::Sampling:seed") == 42
        assert "Iterator::Sampling::Sampling::Range:next" in ctx

        expected = _drain(outer.make_iterator())
        assert _outputs_with_breakpoints(outer, [2, 5, 7]) == expected

    def test_custom_upstream_restore(self):
        source = FailingStage(StageConfig(name="failing"), fail_after=50)
        stage = SamplingStage(StageConfig(name="s"), input_stage=source, rate=0.5, seed=3, seed2=4)
        iterator = stage.make_iterator()
        first = [int(iterator.get_next()) for _ in range(3)]
        ctx = CheckpointContext()
        iterator.save(ctx)
        assert ctx.read_scalar("Iterator::Sampling::Failing:pulled") == iterator.draw_count

        restored = stage.make_iterator()
        restored.restore(ctx)
        assert int(restored.get_next()) == int(iterator.get_next())
        assert first == sorted(first)

    def test_checkpoint_round_trips_through_disk(self, ten_percent_stage, tmp_path):
        iterator = ten_percent_stage.make_iterator()
        iterator.get_next()
        ctx = CheckpointContext()
        iterator.save(ctx)
        path = tmp_path / "ckpt.pkl"
        ctx.save(path)

        restored = ten_percent_stage.make_iterator()
        restored.restore(CheckpointContext.load(path))
        assert _drain(restored) == [11, 19]
