"""
Grab Orchestrator

Sequences one grab run: listing scan, queue population, parallel detail
fetch, merge into the output sink, and cleanup of the transient files.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from functools import partial
from pathlib import Path
from typing import Any, Protocol

from tvgrab.schemas import ChannelDeclaration, ProgrammeRecord
from tvgrab.services.detail_scraper import DetailScraper
from tvgrab.services.fetch_types import ChannelEntry, ScanContext
from tvgrab.services.fetcher import Fetcher
from tvgrab.services.listing_scanner import (
    ListingScanner,
    ScanPrerequisiteError,
    build_tasks,
    channel_id_for,
)
from tvgrab.services.stream_merger import StreamMerger
from tvgrab.services.work_queue import QueueBuildError, WorkQueue
from tvgrab.services.worker_pool import TaskFn, WorkerPool, WorkerSpawnError
from tvgrab.utils.file_operations import QUEUE_FILENAME, cleanup_work_dir, create_work_dir
from tvgrab.utils.logging_helpers import (
    log_grab_end,
    log_grab_start,
    log_run_stats,
    log_scan_summary,
    log_section_end,
    log_section_start,
)


logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    SCANNING = "Scanning"
    QUEUE_BUILT = "QueueBuilt"
    WORKERS_RUNNING = "WorkersRunning"
    MERGING = "Merging"
    CLEANUP = "Cleanup"
    DONE = "Done"
    FATAL_ERROR = "FatalError"


class OutputSink(Protocol):
    def write_channel(self, channel: ChannelDeclaration) -> None: ...

    def write_programme(self, record: ProgrammeRecord) -> None: ...


@dataclass(slots=True)
class RunResult:
    state: RunState
    channels: int = 0
    tasks: int = 0
    workers: int = 0
    programmes: int = 0
    warnings: int = 0
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.state is RunState.FATAL_ERROR or self.warnings:
            return 1
        return 0

    def to_dict(self) -> dict:
        payload = {
            "status": self.state.value,
            "channels": self.channels,
            "tasks": self.tasks,
            "workers": self.workers,
            "programmes": self.programmes,
            "warnings": self.warnings,
            "exit_code": self.exit_code,
        }
        if self.error:
            payload["error"] = self.error
        return payload


class GrabOrchestrator:
    """Runs the Scanning -> QueueBuilt -> WorkersRunning -> Merging -> Cleanup -> Done sequence."""

    def __init__(
        self,
        context: ScanContext,
        *,
        listing_url_template: str,
        detail_url_template: str,
        channel_id_suffix: str,
        workers: int = 8,
        fetcher: Any = None,
        task_fn: TaskFn | None = None,
        work_dir: str | Path | None = None,
        mp_context: Any = None,
        process_factory: Any = None,
        spawn_retry_limit: int = 5,
        spawn_backoff_sec: float = 1.0,
        log_level: str | None = None,
    ) -> None:
        self.context = context
        self.listing_url_template = listing_url_template
        self.detail_url_template = detail_url_template
        self.channel_id_suffix = channel_id_suffix
        self.workers = workers
        self.fetcher = fetcher or Fetcher()
        self.task_fn = task_fn or DetailScraper(detail_url_template, context)
        self.work_dir_parent = work_dir
        self.mp_context = mp_context
        self.process_factory = process_factory
        self.spawn_retry_limit = spawn_retry_limit
        self.spawn_backoff_sec = spawn_backoff_sec
        self.log_level = log_level
        self.state = RunState.SCANNING

    @classmethod
    def from_settings(cls, settings, context: ScanContext, **overrides) -> "GrabOrchestrator":
        fetcher_factory = partial(Fetcher.from_settings, settings)
        options = dict(
            listing_url_template=settings.listing_url_template,
            detail_url_template=settings.detail_url_template,
            channel_id_suffix=settings.channel_id_suffix,
            workers=settings.workers,
            fetcher=fetcher_factory(),
            task_fn=DetailScraper(settings.detail_url_template, context, fetcher_factory=fetcher_factory),
            work_dir=settings.work_dir,
            spawn_retry_limit=settings.spawn_retry_limit,
            spawn_backoff_sec=settings.spawn_backoff_sec,
            log_level=settings.log_level,
        )
        if settings.mp_start_method:
            import multiprocessing
            options["mp_context"] = multiprocessing.get_context(settings.mp_start_method)
        options.update(overrides)
        return cls(context, **options)

    def _transition(self, state: RunState) -> None:
        logger.debug(f"State {self.state.value} -> {state.value}")
        self.state = state

    def scan(self) -> dict[int, ChannelEntry]:
        scanner = ListingScanner(self.fetcher, self.listing_url_template)
        channels = scanner.scan(self.context)
        self._scan_warnings = scanner.warnings
        return channels

    def channel_declarations(self, channels: dict[int, ChannelEntry], with_programmes_only: bool = True):
        for number in sorted(channels):
            entry = channels[number]
            if with_programmes_only and not entry.programme_ids:
                continue
            yield ChannelDeclaration(
                channel_id=channel_id_for(number, self.channel_id_suffix),
                display_name=entry.channel_name,
                channel_number=number,
            )

    def list_channels(self, sink: OutputSink) -> RunResult:
        """Scan the first listing window only and write every channel found"""
        self.state = RunState.SCANNING
        context = replace(
            self.context,
            scan_end=self.context.scan_start + timedelta(hours=self.context.window_hours),
            channel_filter=None,
        )
        scanner = ListingScanner(self.fetcher, self.listing_url_template)
        try:
            channels = scanner.scan(context)
        except ScanPrerequisiteError as exc:
            logger.error(f"Channel listing failed: {exc}")
            self._transition(RunState.FATAL_ERROR)
            return RunResult(state=self.state, error=str(exc))
        finally:
            close = getattr(self.fetcher, "close", None)
            if callable(close):
                close()

        for declaration in self.channel_declarations(channels, with_programmes_only=False):
            sink.write_channel(declaration)
        self._transition(RunState.DONE)
        return RunResult(state=self.state, channels=len(channels), warnings=scanner.warnings)

    def run(self, sink: OutputSink) -> RunResult:
        """
        Execute one grab run, writing channels then programmes to the sink

        Returns:
            RunResult; FatalError runs carry the error message
        """
        log_grab_start(logger)
        self.state = RunState.SCANNING
        self._scan_warnings = 0
        result = RunResult(state=self.state)
        work_dir: Path | None = None

        try:
            log_section_start(logger, "listing scan")
            channels = self.scan()
            result.channels = len(channels)
            result.warnings += self._scan_warnings
            log_section_end(logger, "listing scan")

            try:
                work_dir = create_work_dir(self.work_dir_parent)
                queue = WorkQueue(work_dir / QUEUE_FILENAME, mp_context=self.mp_context)
                result.tasks = queue.populate(build_tasks(channels, self.channel_id_suffix))
            except OSError as exc:
                raise QueueBuildError(f"Cannot build work queue: {exc}") from exc
            result.warnings += queue.rejected
            log_scan_summary(logger, result.channels, result.tasks)
            self._transition(RunState.QUEUE_BUILT)

            if result.tasks:
                for declaration in self.channel_declarations(channels):
                    sink.write_channel(declaration)
                self._run_workers(queue, work_dir, sink, result)
            else:
                logger.warning("No programmes discovered - writing channels only")
                for declaration in self.channel_declarations(channels, with_programmes_only=False):
                    sink.write_channel(declaration)
                self._transition(RunState.CLEANUP)

            cleanup_work_dir(work_dir)
            work_dir = None
            self._transition(RunState.DONE)

        except (ScanPrerequisiteError, QueueBuildError, WorkerSpawnError) as exc:
            logger.error(f"Grab aborted in state {self.state.value}: {exc}", exc_info=True)
            self._transition(RunState.FATAL_ERROR)
            result.error = str(exc)

        finally:
            if work_dir is not None:
                cleanup_work_dir(work_dir)
            close = getattr(self.fetcher, "close", None)
            if callable(close):
                close()

        result.state = self.state
        log_run_stats(logger, result.programmes, result.warnings)
        log_grab_end(logger)
        return result

    def _run_workers(self, queue: WorkQueue, work_dir: Path, sink: OutputSink, result: RunResult) -> None:
        self._transition(RunState.WORKERS_RUNNING)
        n_workers = min(self.workers, result.tasks)
        log_section_start(logger, f"detail fetch ({n_workers} workers)")
        pool = WorkerPool(
            work_dir,
            queue,
            mp_context=self.mp_context,
            process_factory=self.process_factory,
            spawn_retry_limit=self.spawn_retry_limit,
            spawn_backoff_sec=self.spawn_backoff_sec,
            log_level=self.log_level,
        )
        handle = queue.open_for_concurrent_read()
        try:
            pool_result = pool.run(n_workers, self.task_fn, handle)
        finally:
            handle.close()
        result.workers = pool_result.started
        result.warnings += pool_result.warnings
        log_section_end(logger, "detail fetch")

        self._transition(RunState.MERGING)
        merger = StreamMerger(work_dir)
        for record in merger.merge(pool_result.started):
            sink.write_programme(record)
            result.programmes += 1
        result.warnings += merger.warnings

        self._transition(RunState.CLEANUP)
