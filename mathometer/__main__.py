from __future__ import annotations

import argparse
import dataclasses
import sys
from collections.abc import Sequence
from pathlib import Path

from .app import run
from .config import AnchorPolicy, AppSettings, ExperimentConfig
from .logs import configure_logging
from .persistence import ProgressStore


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mathometer", description="MathOMeter sentence-verification task.")
    p.add_argument("--content-dir", type=Path, help="folder holding the sentence/character JSON tables")
    p.add_argument("--media-dir", type=Path, help="folder holding Sentences/ and Animations/")
    p.add_argument("--data-dir", type=Path, help="folder for the progress database and log file")
    p.add_argument("--output-dir", type=Path, help="folder for run and params JSON artifacts")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument(
        "--anchor-policy",
        choices=[a.value for a in AnchorPolicy],
        default=AnchorPolicy.PER_RUN.value,
        help="when the anchor time (T0) is reset",
    )
    p.add_argument(
        "--no-confirm-each-run",
        action="store_true",
        help="only show the run confirmation before the first run of the session",
    )
    p.add_argument(
        "--params-each-run",
        action="store_true",
        help="also write a params snapshot after every completed run",
    )
    p.add_argument(
        "--reset-subject",
        type=int,
        metavar="N",
        help="delete the stored run order and progress for subject N, then exit",
    )
    return p


def _settings(args: argparse.Namespace) -> AppSettings:
    base = AppSettings.from_env()
    data_dir = args.data_dir or base.data_dir
    content_dir = args.content_dir or base.content_dir
    return AppSettings(
        content_dir=content_dir,
        data_dir=data_dir,
        output_dir=args.output_dir or (base.output_dir if args.data_dir is None else data_dir / "runs"),
        media_dir=args.media_dir or (base.media_dir if args.content_dir is None else content_dir.parent),
        log_level=args.log_level or base.log_level,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for running MathOMeter from the command line."""
    args = _parser().parse_args(argv)
    settings = _settings(args)
    config = dataclasses.replace(
        ExperimentConfig(),
        anchor_policy=AnchorPolicy(args.anchor_policy),
        confirm_each_run=not args.no_confirm_each_run,
        params_snapshot_each_run=bool(args.params_each_run),
    )

    if args.reset_subject is not None:
        configure_logging(level=settings.log_level, log_path=settings.log_path)
        ProgressStore(settings.db_path, total_runs=config.total_runs).reset(args.reset_subject)
        return 0

    return run(settings=settings, config=config)


if __name__ == "__main__":
    sys.exit(main())
