"""Process-wide console shared by all workers of a run."""

import sys
import threading
from dataclasses import dataclass, field
from typing import BinaryIO


def _stdout() -> BinaryIO:
    return sys.stdout.buffer


@dataclass(frozen=True, kw_only=True)
class Console:
    """Writes each worker's captured output as one uninterrupted block."""

    stream: BinaryIO = field(default_factory=_stdout)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def write_block(self, data: bytes) -> None:
        """Write ``data`` in a single call, never interleaved with another block."""
        if not data:
            return
        with self._lock:
            self.stream.write(data)
            self.stream.flush()
