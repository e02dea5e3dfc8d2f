"""Worker process entry point: run one test file with pytest.

Started by ``WorkerTransport`` as ``python -m parallel_suite.worker``. Reads a
single ``WorkItem`` from stdin, runs the file and writes the encoded result
tree to the descriptor named by ``PARALLEL_SUITE_RESULT_FD``.
"""

import importlib.util
import json
import logging
import os
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from types import ModuleType
from typing import Any

import pytest

from parallel_suite.graph import encode_suite
from parallel_suite.models.result import ResultNode, TestError
from parallel_suite.models.work import RESULT_FD_ENV, WorkItem

log = logging.getLogger(__name__)

SETUP_MODULE_NAME = "parallel_suite_setup"


class ResultCollector:
    """pytest plugin that mirrors the session as a ``ResultNode`` tree.

    ``on_root_end`` is called once with the root suite when the session
    finishes.
    """

    def __init__(self, on_root_end: Callable[[ResultNode], None]) -> None:
        self.root = ResultNode(title="", kind="suite", root=True)
        self._on_root_end = on_root_end
        self._suites: dict[str, ResultNode] = {}
        self._tests: dict[str, ResultNode] = {}
        self._finished = False

    def _suite_for(self, collector: pytest.Collector, parent: ResultNode) -> ResultNode:
        if (suite := self._suites.get(collector.nodeid)) is None:
            title = collector.name if isinstance(collector, pytest.Class) else collector.nodeid
            suite = parent.add_suite(
                ResultNode(title=title, kind="suite", file=str(collector.path))
            )
            self._suites[collector.nodeid] = suite
        return suite

    def pytest_collection_finish(self, session: pytest.Session) -> None:
        for item in session.items:
            parent = self.root
            for node in item.listchain():
                if isinstance(node, pytest.Module | pytest.Class):
                    parent = self._suite_for(node, parent)
            self._tests[item.nodeid] = parent.add_test(
                ResultNode(title=item.name, kind="test", file=str(item.path))
            )

    def pytest_collectreport(self, report: pytest.CollectReport) -> None:
        if not report.failed:
            return
        suite = self.root.add_suite(ResultNode(title=report.nodeid, kind="suite"))
        suite.add_test(
            ResultNode(
                title="collection error",
                kind="test",
                status="failed",
                duration=0.0,
                error=TestError(
                    message=_crash_message(report), longrepr=report.longreprtext
                ),
            )
        )

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        test = self._tests.get(report.nodeid)
        if test is None:
            return

        test.duration = (test.duration or 0.0) + report.duration
        if report.failed:
            if test.status != "failed":
                test.error = TestError(
                    message=_crash_message(report), longrepr=report.longreprtext
                )
            test.status = "failed"
        elif report.skipped:
            if test.status != "failed":
                test.status = "pending"
        elif report.when == "call" and test.status is None:
            test.status = "passed"

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        if self._finished:
            return
        self._finished = True
        self._on_root_end(self.root)


def _crash_message(report: pytest.CollectReport | pytest.TestReport) -> str:
    crash = getattr(report.longrepr, "reprcrash", None)
    if crash is not None and getattr(crash, "message", None):
        return str(crash.message)
    lines = report.longreprtext.strip().splitlines()
    return lines[-1] if lines else "failed"


def build_pytest_args(item: WorkItem) -> Sequence[str]:
    """Translate a work item into pytest command-line arguments."""
    options = item.options
    args = [
        item.file,
        "-p",
        "no:cacheprovider",
        f"--color={'yes' if options.get('color', True) else 'no'}",
    ]
    args.extend(str(arg) for arg in options.get("args", ()))
    ini: Mapping[str, Any] = options.get("ini") or {}
    for key, value in ini.items():
        args.extend(["-o", f"{key}={value}"])
    return args


def load_setup_module(path: str) -> ModuleType:
    """Import the setup file so it runs before the test file is collected."""
    spec = importlib.util.spec_from_file_location(SETUP_MODULE_NAME, Path(path))
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load setup file {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[SETUP_MODULE_NAME] = module
    spec.loader.exec_module(module)
    return module


def run_work_item(
    item: WorkItem, on_root_end: Callable[[ResultNode], None]
) -> int:
    """Run the item's file with pytest and report the tree via ``on_root_end``."""
    plugins: list[object] = [ResultCollector(on_root_end)]
    if item.setup:
        plugins.append(load_setup_module(item.setup))
    return int(pytest.main(list(build_pytest_args(item)), plugins=plugins))


def result_sender(fd: int | None) -> Callable[[ResultNode], None]:
    """Return a callback writing the encoded tree to ``fd`` and closing it."""

    def send(root: ResultNode) -> None:
        if fd is None:
            log.warning("No result channel configured, results not sent")
            return
        with os.fdopen(fd, "wb") as channel:
            channel.write(json.dumps(encode_suite(root)).encode())

    return send


def main() -> None:
    """Worker entry point."""
    item = WorkItem.model_validate_json(sys.stdin.buffer.read())
    raw_fd = os.environ.pop(RESULT_FD_ENV, None)
    fd = int(raw_fd) if raw_fd else None
    if fd is not None:
        # Processes started by the tests must not hold the channel open.
        os.set_inheritable(fd, False)

    print(item.file, flush=True)
    sys.exit(run_work_item(item, result_sender(fd)))


if __name__ == "__main__":  # pragma: no cover
    main()
