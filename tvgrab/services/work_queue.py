"""
Work Queue

Append-once, claim-many queue of fixed-width task records. The records live in
one backing file; workers share a single claim counter and read exactly one
record per claim, so a record is never split, duplicated or dropped.
"""
from __future__ import annotations

import logging
import multiprocessing
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from tvgrab.services.fetch_types import TaskRecord


logger = logging.getLogger(__name__)

CHANNEL_FIELD_WIDTH = 32
PROGRAMME_FIELD_WIDTH = 32

_FIELD_VALUE = re.compile(r"^[!-~]+$")


class QueueBuildError(Exception):
    """Raised when the backing file cannot be created or written"""


class MalformedTaskRecord(ValueError):
    """Raised when a claimed chunk does not have the fixed record shape"""

    def __init__(self, index: int, chunk: bytes):
        super().__init__(f"Malformed task record #{index}: {chunk!r}")
        self.index = index
        self.chunk = chunk


@dataclass
class QueueHandle:
    """
    Shared read handle to a populated queue

    Picklable so it can be handed to worker processes; each process opens its
    own descriptor on first use while the claim counter stays shared.
    """
    path: str
    record_width: int
    counter: Any
    _fd: int | None = field(default=None, repr=False)
    _pid: int | None = field(default=None, repr=False)

    def fileno(self) -> int:
        pid = os.getpid()
        if self._fd is None or self._pid != pid:
            # Threads sharing this handle must not each open a descriptor
            with self.counter.get_lock():
                if self._fd is None or self._pid != pid:
                    self._fd = os.open(self.path, os.O_RDONLY)
                    self._pid = pid
        return self._fd

    def close(self) -> None:
        if self._fd is not None and self._pid == os.getpid():
            os.close(self._fd)
        self._fd = None
        self._pid = None

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        state["_fd"] = None
        state["_pid"] = None
        return state


class WorkQueue:
    """File-backed queue of fixed-width TaskRecords."""

    def __init__(
        self,
        path: str | Path,
        channel_width: int = CHANNEL_FIELD_WIDTH,
        programme_width: int = PROGRAMME_FIELD_WIDTH,
        mp_context: Any = None,
    ) -> None:
        self.path = Path(path)
        self.channel_width = channel_width
        self.programme_width = programme_width
        self._ctx = mp_context or multiprocessing.get_context()
        self.size = 0
        self.rejected = 0

    def __getstate__(self) -> dict:
        # Contexts do not pickle; workers only claim and never open
        state = self.__dict__.copy()
        state["_ctx"] = None
        return state

    @property
    def record_width(self) -> int:
        return self.channel_width + self.programme_width + 1

    def encode(self, task: TaskRecord) -> bytes:
        """
        Serialize a task as one padded, newline-terminated record

        Raises:
            ValueError: If a value is empty, not printable ASCII or too wide
        """
        for value, width, name in (
            (task.channel_id, self.channel_width, "channel_id"),
            (task.programme_id, self.programme_width, "programme_id"),
        ):
            if not _FIELD_VALUE.match(value):
                raise ValueError(f"{name} must be non-empty printable ASCII without spaces: {value!r}")
            if len(value) > width:
                raise ValueError(f"{name} longer than {width} characters: {value!r}")

        line = f"{task.channel_id:<{self.channel_width}}{task.programme_id:<{self.programme_width}}\n"
        return line.encode("ascii")

    def decode(self, index: int, chunk: bytes) -> TaskRecord:
        """
        Parse one record

        Raises:
            MalformedTaskRecord: If the chunk does not have the record shape
        """
        if len(chunk) != self.record_width or not chunk.endswith(b"\n"):
            raise MalformedTaskRecord(index, chunk)
        try:
            text = chunk[:-1].decode("ascii")
        except UnicodeDecodeError as e:
            raise MalformedTaskRecord(index, chunk) from e

        channel_id = text[:self.channel_width].rstrip(" ")
        programme_id = text[self.channel_width:].rstrip(" ")
        if not _FIELD_VALUE.match(channel_id) or not _FIELD_VALUE.match(programme_id):
            raise MalformedTaskRecord(index, chunk)
        return TaskRecord(channel_id=channel_id, programme_id=programme_id)

    def populate(self, tasks: Iterable[TaskRecord]) -> int:
        """
        Write every task to the backing file, replacing any previous content

        Returns:
            Number of records written
        """
        count = 0
        self.rejected = 0
        with open(self.path, "wb") as f:
            for task in tasks:
                try:
                    record = self.encode(task)
                except ValueError as e:
                    logger.warning(f"Not queueing programme {task.programme_id!r} on {task.channel_id}: {e}")
                    self.rejected += 1
                    continue
                f.write(record)
                count += 1
        self.size = count
        logger.info(f"Queued {count} tasks in {self.path} ({self.record_width} bytes per record)")
        return count

    def open_for_concurrent_read(self) -> QueueHandle:
        """Open the populated queue for claiming; the handle is shared by all workers"""
        if not self.path.exists():
            raise FileNotFoundError(f"Queue has not been populated: {self.path}")
        counter = self._ctx.Value("q", 0)
        return QueueHandle(path=str(self.path), record_width=self.record_width, counter=counter)

    def claim_next(self, handle: QueueHandle) -> TaskRecord | None:
        """
        Atomically claim the next unclaimed record

        Returns:
            The claimed task, or None when the queue is exhausted

        Raises:
            MalformedTaskRecord: If the claimed chunk is malformed; the record
                stays claimed so the caller can skip it and claim again
        """
        with handle.counter.get_lock():
            index = handle.counter.value
            handle.counter.value = index + 1

        chunk = os.pread(handle.fileno(), handle.record_width, index * handle.record_width)
        if not chunk:
            return None
        return self.decode(index, chunk)
