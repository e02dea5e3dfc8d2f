"""Models for the suite/test result tree."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

type NodeKind = Literal["suite", "test"]
type TestStatus = Literal["passed", "failed", "pending"]

NODE_KINDS: frozenset[str] = frozenset({"suite", "test"})


@dataclass(frozen=True, kw_only=True)
class TestError:
    """Failure detail attached to a failed test."""

    __test__ = False

    message: str
    longrepr: str | None = None


@dataclass(eq=False, kw_only=True)
class ResultNode:
    """A suite or a test in the result tree.

    Nodes compare by identity. ``parent`` points back up the tree, so the
    object graph is cyclic and needs ``parallel_suite.graph`` to cross a
    process boundary.
    """

    title: str
    kind: NodeKind = "suite"
    root: bool = False
    file: str | None = None
    status: TestStatus | None = None
    duration: float | None = None
    error: TestError | None = None
    suites: list[ResultNode] = field(default_factory=list)
    tests: list[ResultNode] = field(default_factory=list)
    parent: ResultNode | None = field(default=None, repr=False)

    @property
    def full_title(self) -> str:
        """Titles from the top-most named ancestor down to this node."""
        titles: list[str] = []
        node: ResultNode | None = self
        while node is not None:
            if node.title and not node.root:
                titles.append(node.title)
            node = node.parent
        return " ".join(reversed(titles))

    def add_suite(self, suite: ResultNode) -> ResultNode:
        suite.parent = self
        self.suites.append(suite)
        return suite

    def add_test(self, test: ResultNode) -> ResultNode:
        test.parent = self
        self.tests.append(test)
        return test

    def iter_tests(self) -> Iterator[ResultNode]:
        """Yield every test below this node, depth first in tree order."""
        yield from self.tests
        for suite in self.suites:
            yield from suite.iter_tests()


@dataclass(frozen=True, kw_only=True)
class RunStats:
    """Counts derived from an aggregate result."""

    suites: int
    tests: int
    passes: int
    failures: int
    pending: int


@dataclass(eq=False, kw_only=True)
class AggregateResult(ResultNode):
    """Synthetic root owning the top-level suites of every file in a run."""

    title: str = ""
    root: bool = True
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration: float | None = 0.0

    @property
    def stats(self) -> RunStats:
        tests = list(self.iter_tests())
        return RunStats(
            suites=len(self.suites),
            tests=len(tests),
            passes=sum(1 for t in tests if t.status == "passed"),
            failures=sum(1 for t in tests if t.status == "failed"),
            pending=sum(1 for t in tests if t.status == "pending"),
        )
