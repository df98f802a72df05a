"""
Command-line interface for sampleflow.

Provides commands for:
- Sampling an integer range with a seeded Bernoulli stage
- Checkpointing a partial traversal and resuming it later
"""

import argparse
import json
import logging
from pathlib import Path
import sys

from sampleflow import __version__
from sampleflow.config import SamplingConfig, load_config
from sampleflow.pipelines import CheckpointContext, CheckpointError, Pipeline, StageConfig
from sampleflow.pipelines.stages import RangeStage, SamplingStage


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="sampleflow",
        description="sampleflow: deterministic, checkpointable stream sampling",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sample_parser = subparsers.add_parser("sample", help="Sample elements of an integer range")
    sample_parser.add_argument("--start", type=int, default=0, help="First value of the range")
    sample_parser.add_argument("--stop", type=int, required=True, help="End of the range (exclusive)")
    sample_parser.add_argument("--step", type=int, default=1, help="Range step")
    sample_parser.add_argument("--rate", type=float, help="Probability of keeping each element")
    sample_parser.add_argument("--seed", type=int, help="First seed (default 0)")
    sample_parser.add_argument("--seed2", type=int, help="Second seed (default 0)")
    sample_parser.add_argument("--config", type=str, help="JSON sampling config (rate/seed/seed2/name)")
    sample_parser.add_argument("--take", type=int, help="Stop after this many elements")
    sample_parser.add_argument("--checkpoint-in", type=str, help="Resume from this checkpoint file")
    sample_parser.add_argument("--checkpoint-out", type=str, help="Write a checkpoint here after sampling")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "sample":
        return _run_sample(parser, args)

    return 0


def _sampling_config(parser, args) -> SamplingConfig:
    overrides = {k: getattr(args, k) for k in ("rate", "seed", "seed2") if getattr(args, k) is not None}
    try:
        if args.config:
            base = load_config(args.config).to_dict()
            base.update(overrides)
            return SamplingConfig.from_dict(base)
        return SamplingConfig.from_dict(overrides)
    except (OSError, ValueError) as e:
        parser.error(str(e))


def _run_sample(parser, args) -> int:
    if args.take is not None and args.take < 0:
        parser.error(f"--take must be non-negative, got: {args.take}")
    config = _sampling_config(parser, args)
    try:
        source = RangeStage(StageConfig(name="range"), start=args.start, stop=args.stop, step=args.step)
    except ValueError as e:
        parser.error(str(e))
    try:
        stage = SamplingStage.from_config(config.stage_config(), input_stage=source)
    except ValueError as e:
        parser.error(str(e))
    pipeline = Pipeline(stage, name="sample")

    if args.checkpoint_in:
        try:
            iterator = pipeline.resume(CheckpointContext.load(args.checkpoint_in))
        except (OSError, CheckpointError) as e:
            parser.error(f"Cannot resume from {args.checkpoint_in}: {e}")
    else:
        iterator = pipeline.iterator()

    elements = pipeline.run(iterator, max_elements=args.take)

    if args.checkpoint_out:
        out_path = Path(args.checkpoint_out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        pipeline.save(iterator).save(out_path)

    print(json.dumps([int(x) for x in elements]))
    return 0


if __name__ == "__main__":
    sys.exit(main())
