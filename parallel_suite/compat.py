"""Callback-style entry point over ``ParallelRunner``."""

import asyncio
from collections.abc import Callable, Mapping, Sequence
from os import PathLike
from typing import Any

from parallel_suite.models.result import AggregateResult
from parallel_suite.models.work import RunOptions
from parallel_suite.orchestrator import ParallelRunner

type Callback = Callable[[AggregateResult], object]


def run_files(
    files: Sequence[str | PathLike[str]],
    options: RunOptions | Mapping[str, Any] | Callback | None = None,
    callback: Callback | None = None,
    *,
    runner: ParallelRunner | None = None,
) -> AggregateResult:
    """Run ``files`` to completion, then hand the result to ``callback``.

    Accepts both ``run_files(files, callback)`` and
    ``run_files(files, options, callback)``; options may be a ``RunOptions``
    or a mapping of its fields.
    """
    if callback is None and callable(options):
        callback, options = options, None

    if options is None:
        run_options = RunOptions()
    elif isinstance(options, RunOptions):
        run_options = options
    elif isinstance(options, Mapping):
        run_options = RunOptions.model_validate(options)
    else:
        raise TypeError(f"Unsupported options type: {type(options).__name__}")

    result = asyncio.run((runner or ParallelRunner()).run(files, run_options))
    if callback is not None:
        callback(result)
    return result
