"""Run one work item in an isolated worker process."""

import asyncio
import json
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import cast

from parallel_suite.graph import decode_suite
from parallel_suite.models.result import ResultNode
from parallel_suite.models.work import RESULT_FD_ENV, WorkItem

log = logging.getLogger(__name__)

DEFAULT_WORKER_COMMAND: Sequence[str] = (sys.executable, "-m", "parallel_suite.worker")


@dataclass(frozen=True, kw_only=True)
class WorkerOutcome:
    """What a single worker produced.

    ``suites`` is empty when the worker could not start, died before
    reporting, or reported something that could not be decoded.
    """

    file: str
    suites: Sequence[ResultNode]
    output: bytes = b""
    exit_code: int | None = None


@dataclass(frozen=True, kw_only=True)
class WorkerTransport:
    """Spawns a worker per item and collects its result and output."""

    command: Sequence[str] = DEFAULT_WORKER_COMMAND
    base_env: Mapping[str, str] | None = None

    async def run(self, item: WorkItem) -> WorkerOutcome:
        """Run ``item`` to completion and return its outcome.

        The worker's stdout and stderr share one pipe and are buffered in
        memory; the caller decides when to write them out.
        """
        read_fd, write_fd = os.pipe()
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                pass_fds=(write_fd,),
                env=self._build_env(item, write_fd),
            )
        except (OSError, ValueError) as e:
            os.close(read_fd)
            log.error("Error executing file %s: %s", item.file, e)
            return WorkerOutcome(file=item.file, suites=[])
        finally:
            os.close(write_fd)

        stdout = cast(asyncio.StreamReader, process.stdout)
        output, message, _ = await asyncio.gather(
            stdout.read(),
            read_channel(read_fd),
            self._send(process, item),
        )
        exit_code = await process.wait()

        suites = self._decode(item, message, exit_code)
        log.info(
            "Worker finished: file=%s suites=%d exit_code=%s",
            item.file,
            len(suites),
            exit_code,
        )
        return WorkerOutcome(
            file=item.file, suites=suites, output=output, exit_code=exit_code
        )

    def _build_env(self, item: WorkItem, write_fd: int) -> dict[str, str]:
        base = os.environ if self.base_env is None else self.base_env
        return {
            **base,
            "PYTHONUNBUFFERED": "1",
            **item.env,
            RESULT_FD_ENV: str(write_fd),
        }

    async def _send(self, process: asyncio.subprocess.Process, item: WorkItem) -> None:
        stdin = cast(asyncio.StreamWriter, process.stdin)
        try:
            stdin.write(item.to_message())
            await stdin.drain()
            stdin.close()
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            log.warning("Worker for %s exited before reading its work item", item.file)

    def _decode(
        self, item: WorkItem, message: bytes, exit_code: int
    ) -> Sequence[ResultNode]:
        if not message:
            log.warning(
                "Worker for %s exited with code %s without reporting results",
                item.file,
                exit_code,
            )
            return []

        try:
            root = decode_suite(json.loads(message))
        except (ValueError, RecursionError) as e:
            log.error("Could not decode results for %s: %s", item.file, e)
            return []

        return list(root.suites)


async def read_channel(fd: int) -> bytes:
    """Read a pipe until every writer has closed it."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), os.fdopen(fd, "rb")
    )
    try:
        return await reader.read()
    finally:
        transport.close()
