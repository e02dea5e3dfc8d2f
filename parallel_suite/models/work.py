"""Models for run configuration and the work item sent to each worker."""

from pathlib import Path
from typing import Any

from pydantic import Field, PositiveInt

from parallel_suite.models.base import Model

RESULT_FD_ENV = "PARALLEL_SUITE_RESULT_FD"


class WorkItem(Model):
    """Single message sent to a worker process: one file to run."""

    file: str = Field(..., description="Path of the test file to run")
    setup: str | None = Field(
        default=None, description="Path of a file loaded before the test file"
    )
    options: dict[str, Any] = Field(
        default_factory=dict, description="Opaque test framework options"
    )
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment for the worker"
    )

    def to_message(self) -> bytes:
        """Serialize to the wire message, leaving out empty optional fields."""
        exclude = {"env"} if not self.env else set()
        return self.model_dump_json(exclude_none=True, exclude=exclude).encode()


class RunOptions(Model):
    """Configuration shared by every file of a run."""

    setup: Path | None = Field(
        default=None, description="File loaded before every test file"
    )
    framework_options: dict[str, Any] = Field(
        default_factory=dict,
        description="Options passed through to the test framework driver",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for every worker process",
    )
    concurrency: PositiveInt | None = Field(
        default=None,
        description="Maximum number of concurrent workers (default: CPU count)",
    )
