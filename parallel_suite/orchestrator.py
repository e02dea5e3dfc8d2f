"""Orchestrator running test files in parallel worker processes."""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from os import PathLike

from parallel_suite.console import Console
from parallel_suite.limiter import ConcurrencyLimiter
from parallel_suite.models.result import AggregateResult, ResultNode
from parallel_suite.models.work import RunOptions, WorkItem
from parallel_suite.transport import WorkerOutcome, WorkerTransport

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class ParallelRunner:
    """Runs each test file in its own worker and merges the results."""

    transport: WorkerTransport = field(default_factory=WorkerTransport)
    console: Console = field(default_factory=Console)

    async def run(
        self,
        files: Sequence[str | PathLike[str]],
        options: RunOptions | None = None,
    ) -> AggregateResult:
        """Run every file and return the merged result tree.

        Args:
            files: Test files, in the order their suites should appear
            options: Configuration shared by every file

        Returns:
            Synthetic root whose suites are every file's top-level suites

        """
        options = options or RunOptions()
        limiter = ConcurrencyLimiter(options.concurrency)
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()

        items = [build_work_item(file, options) for file in files]
        log.info(
            "Running %d file(s) with concurrency %d", len(items), limiter.ceiling
        )

        outcomes = await limiter.map(self._run_item, items)

        aggregate = AggregateResult(started_at=started_at)
        for suite in self._process_outcomes(items, outcomes):
            aggregate.add_suite(suite)
        aggregate.duration = time.monotonic() - start

        log.info(
            "Run completed: files=%d suites=%d duration=%.2fs",
            len(items),
            len(aggregate.suites),
            aggregate.duration,
        )
        return aggregate

    async def _run_item(self, item: WorkItem) -> WorkerOutcome:
        outcome = await self.transport.run(item)
        self.console.write_block(outcome.output)
        return outcome

    def _process_outcomes(
        self,
        items: Sequence[WorkItem],
        outcomes: Sequence[WorkerOutcome | BaseException],
    ) -> Sequence[ResultNode]:
        """Flatten outcomes in input order, dropping failed workers."""
        suites: list[ResultNode] = []

        for item, outcome in zip(items, outcomes, strict=True):
            if isinstance(outcome, WorkerOutcome):
                suites.extend(outcome.suites)
            elif isinstance(outcome, Exception):
                log.error(
                    "Worker for %s failed: %s", item.file, outcome, exc_info=outcome
                )
            else:
                raise outcome

        return suites


def build_work_item(file: str | PathLike[str], options: RunOptions) -> WorkItem:
    """Merge the shared run configuration with one file path."""
    return WorkItem(
        file=str(file),
        setup=str(options.setup) if options.setup is not None else None,
        options={"color": True, **options.framework_options},
        env=dict(options.env),
    )
