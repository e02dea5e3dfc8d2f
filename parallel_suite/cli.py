"""CLI entry point for running test files in parallel."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from parallel_suite.models.result import AggregateResult
from parallel_suite.models.work import RunOptions
from parallel_suite.orchestrator import ParallelRunner

STATUS_SYMBOLS = {
    "passed": "✓",
    "failed": "✗",
    "pending": "-",
}


def log_results_summary(log: logging.Logger, aggregate: AggregateResult) -> None:
    """Log one line per test followed by the run totals."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for test in aggregate.iter_tests():
        symbol = STATUS_SYMBOLS.get(test.status or "", "?")
        log.info(
            "%s %s: %s (%.2fs)",
            symbol,
            test.full_title,
            test.status,
            test.duration or 0.0,
        )
        if test.error is not None:
            log.info("  Message: %s", test.error.message)

    stats = aggregate.stats
    log.info(
        "%d passing, %d failing, %d pending in %.2fs",
        stats.passes,
        stats.failures,
        stats.pending,
        aggregate.duration or 0.0,
    )


def format_output(aggregate: AggregateResult) -> dict[str, Any]:
    """Format the aggregate result for JSON output."""
    results = [
        {
            "title": test.full_title,
            "file": test.file,
            "status": test.status,
            "duration": test.duration,
            "message": test.error.message if test.error else None,
        }
        for test in aggregate.iter_tests()
    ]
    stats = aggregate.stats

    return {
        "total": stats.tests,
        "passed": stats.passes,
        "failed": stats.failures,
        "pending": stats.pending,
        "suites": stats.suites,
        "started_at": aggregate.started_at.isoformat(),
        "duration": aggregate.duration,
        "results": results,
    }


def parse_env(items: Sequence[str]) -> dict[str, str]:
    """Parse KEY=VALUE pairs."""
    env: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {item!r}")
        env[key] = value
    return env


async def run(files: Sequence[Path], options: RunOptions) -> int:
    """Run the files and return the exit code."""
    log = logging.getLogger("parallel_suite")

    if not files:
        log.info("No test files given")
        print(json.dumps({"total": 0, "results": []}))
        return 0

    aggregate = await ParallelRunner().run(files, options)

    log_results_summary(log, aggregate)
    print(json.dumps(format_output(aggregate), indent=2))

    # A file that contributed no suite crashed, failed to report, or had no tests.
    missing = len(files) - len(aggregate.suites)
    if missing > 0:
        log.warning("%d file(s) reported no results", missing)

    return 1 if aggregate.stats.failures or missing > 0 else 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run test files in parallel, one worker process per file"
    )
    parser.add_argument("files", nargs="*", type=Path, help="Test files to run")
    parser.add_argument(
        "--setup",
        type=Path,
        default=None,
        help="File loaded before every test file",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum number of concurrent workers (default: CPU count)",
    )
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra environment variable for every worker (repeatable)",
    )
    parser.add_argument(
        "--pytest-arg",
        action="append",
        default=[],
        dest="pytest_args",
        metavar="ARG",
        help="Extra pytest argument for every worker (repeatable)",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored pytest output",
    )

    args = parser.parse_args()

    try:
        env = parse_env(args.env)
    except ValueError as e:
        parser.error(str(e))
    if args.concurrency is not None and args.concurrency < 1:
        parser.error("--concurrency must be a positive integer")

    framework_options: dict[str, Any] = {"args": args.pytest_args}
    if args.no_color:
        framework_options["color"] = False

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    options = RunOptions(
        setup=args.setup,
        framework_options=framework_options,
        env=env,
        concurrency=args.concurrency,
    )
    sys.exit(asyncio.run(run(files=args.files, options=options)))


if __name__ == "__main__":  # pragma: no cover
    main()
