"""Fixtures for integration tests."""

import io
import textwrap
from pathlib import Path
from typing import Protocol

import pytest

from parallel_suite.console import Console
from parallel_suite.orchestrator import ParallelRunner


class WriteTestFileFn(Protocol):
    """Protocol for test file creation function."""

    def __call__(self, name: str, body: str) -> Path:
        """Write a test module and return its path."""


@pytest.fixture
def test_dir(tmp_path: Path) -> Path:
    """Directory holding the generated test modules."""
    directory = tmp_path / "suite"
    directory.mkdir()
    return directory


@pytest.fixture
def write_test_file(test_dir: Path) -> WriteTestFileFn:
    """Return a function to write test modules."""

    def _write(name: str, body: str) -> Path:
        path = test_dir / name
        path.write_text(textwrap.dedent(body))
        return path

    return _write


@pytest.fixture
def console_stream() -> io.BytesIO:
    """Captures what workers flush to the console."""
    return io.BytesIO()


@pytest.fixture
def runner(console_stream: io.BytesIO) -> ParallelRunner:
    """Runner spawning real pytest workers."""
    return ParallelRunner(console=Console(stream=console_stream))
