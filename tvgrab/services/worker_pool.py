"""
Worker Pool

Runs the detail-fetch phase in parallel worker processes. Workers coordinate
only through the shared work queue; each one appends its results to a private
output file addressed by its index.
"""
from __future__ import annotations

import errno
import logging
import multiprocessing
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from tvgrab.schemas import ProgrammeRecord, WorkerEntry
from tvgrab.services.fetch_types import TaskRecord
from tvgrab.services.work_queue import MalformedTaskRecord, QueueHandle, WorkQueue
from tvgrab.utils.file_operations import worker_output_path


logger = logging.getLogger(__name__)

TaskFn = Callable[[TaskRecord], ProgrammeRecord | None]

TRANSIENT_SPAWN_ERRNOS = frozenset({errno.EAGAIN, errno.ENOMEM})


class WorkerSpawnError(RuntimeError):
    """Raised when no worker could be started"""
    pass


@dataclass(slots=True)
class PoolResult:
    started: int
    warnings: int


class _WorkerLogAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[Worker {self.extra['index']}] {msg}", kwargs


def worker_main(
    index: int,
    queue: WorkQueue,
    handle: QueueHandle,
    task_fn: TaskFn,
    output_path: str,
    warnings_counter: Any,
    log_level: str | None = None,
) -> None:
    """
    Claim tasks until the queue is exhausted, appending one entry per record

    Per-task failures are logged, counted and skipped; they never stop the loop.
    """
    if log_level and not logging.getLogger().handlers:
        from tvgrab.config import setup_logging
        setup_logging(log_level)

    log = _WorkerLogAdapter(logger, {"index": index})
    written = 0
    skipped = 0
    log.debug(f"Started, writing to {output_path}")

    try:
        with open(output_path, "w", encoding="utf-8") as out:
            while True:
                try:
                    task = queue.claim_next(handle)
                except MalformedTaskRecord as e:
                    log.warning(f"{e} - skipping")
                    skipped += 1
                    continue
                if task is None:
                    break

                try:
                    record = task_fn(task)
                except Exception as e:
                    log.error(f"Task {task.programme_id} on {task.channel_id} failed: {e}", exc_info=True)
                    record = None

                if record is None:
                    skipped += 1
                    continue
                if record.start_time is None:
                    log.warning(f"Dropping programme {task.programme_id}: no start time")
                    skipped += 1
                    continue

                out.write(WorkerEntry.from_record(record).model_dump_json() + "\n")
                written += 1
    finally:
        handle.close()
        close = getattr(task_fn, "close", None)
        if callable(close):
            close()
        with warnings_counter.get_lock():
            warnings_counter.value += skipped

    log.info(f"Finished: {written} programmes written, {skipped} skipped")


class WorkerPool:
    """Spawns N workers over one queue and waits for all of them."""

    def __init__(
        self,
        work_dir: str | Path,
        queue: WorkQueue,
        *,
        mp_context: Any = None,
        process_factory: Callable[..., Any] | None = None,
        spawn_retry_limit: int = 5,
        spawn_backoff_sec: float = 1.0,
        log_level: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.queue = queue
        self._ctx = mp_context or multiprocessing.get_context()
        self._process_factory = process_factory or self._ctx.Process
        self.spawn_retry_limit = spawn_retry_limit
        self.spawn_backoff_sec = spawn_backoff_sec
        self.log_level = log_level
        self._sleep = sleep

    def output_path(self, index: int) -> Path:
        return worker_output_path(self.work_dir, index)

    def run(self, n_workers: int, task_fn: TaskFn, handle: QueueHandle) -> PoolResult:
        """
        Start workers and block until every started worker has terminated

        Returns:
            PoolResult with the number of workers actually started; worker i
            wrote to output_path(i) for i < started

        Raises:
            WorkerSpawnError: If not even one worker could be started
        """
        if n_workers <= 0:
            raise ValueError("n_workers must be > 0")

        warnings_counter = self._ctx.Value("i", 0)
        processes = self._spawn(n_workers, task_fn, handle, warnings_counter)
        logger.info(f"Started {len(processes)}/{n_workers} workers")

        crashed = 0
        for index, process in enumerate(processes):
            process.join()
            if process.exitcode != 0:
                logger.error(f"Worker {index} exited with code {process.exitcode}")
                crashed += 1

        return PoolResult(started=len(processes), warnings=warnings_counter.value + crashed)

    def _spawn(self, n_workers: int, task_fn: TaskFn, handle: QueueHandle, warnings_counter: Any) -> list:
        processes: list = []

        for index in range(n_workers):
            attempt = 0
            while True:
                try:
                    process = self._process_factory(
                        target=worker_main,
                        args=(
                            index,
                            self.queue,
                            handle,
                            task_fn,
                            str(self.output_path(index)),
                            warnings_counter,
                            self.log_level,
                        ),
                        name=f"tvgrab-worker-{index}",
                    )
                    process.start()
                    break
                except Exception as e:
                    if processes:
                        logger.warning(
                            f"Could not start worker {index} ({e}); continuing with {len(processes)} workers"
                        )
                        return processes

                    transient = isinstance(e, OSError) and e.errno in TRANSIENT_SPAWN_ERRNOS
                    if transient and attempt < self.spawn_retry_limit:
                        wait_time = self.spawn_backoff_sec * 2 ** attempt
                        logger.warning(
                            f"Could not start first worker ({e}). Retrying in {wait_time:.1f}s..."
                        )
                        self._sleep(wait_time)
                        attempt += 1
                        continue

                    raise WorkerSpawnError(f"Cannot start any worker: {e}") from e

            processes.append(process)

        return processes
