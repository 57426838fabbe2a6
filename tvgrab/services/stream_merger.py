"""
Stream Merger

k-way merge of the per-worker output files into one stream ordered by
(channel_id, start_time). An exhausted input is marked with END_OF_STREAM,
which sorts after every real key, so the merge ends when the smallest
current key is the sentinel.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Iterator

from pydantic import ValidationError

from tvgrab.schemas import ProgrammeRecord, WorkerEntry
from tvgrab.utils.file_operations import worker_output_path


logger = logging.getLogger(__name__)


class _EndOfStream:
    """Key greater than any (channel_id, start_time) tuple"""

    __slots__ = ()

    def __lt__(self, other) -> bool:
        return False

    def __le__(self, other) -> bool:
        return other is self

    def __gt__(self, other) -> bool:
        return other is not self

    def __ge__(self, other) -> bool:
        return True

    def __eq__(self, other) -> bool:
        return other is self

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()

SortKey = tuple[str, datetime] | _EndOfStream


@dataclass
class MergeCursor:
    """Read position in one worker file"""
    index: int
    handle: IO[str] | None
    current_key: SortKey = END_OF_STREAM
    current_record: ProgrammeRecord | None = None
    skipped: int = 0

    @property
    def exhausted(self) -> bool:
        return self.current_key is END_OF_STREAM

    def advance(self) -> None:
        """Load the next valid entry, or the sentinel when the file is done"""
        while self.handle is not None:
            line = self.handle.readline()
            if not line:
                self.close()
                break
            if not line.strip():
                continue
            try:
                entry = WorkerEntry.model_validate_json(line)
            except ValidationError as e:
                logger.warning(f"Skipping corrupt entry in worker file {self.index}: {e}")
                self.skipped += 1
                continue
            self.current_key = entry.sort_key
            self.current_record = entry.record
            return

        self.current_key = END_OF_STREAM
        self.current_record = None

    def close(self) -> None:
        if self.handle is not None:
            self.handle.close()
            self.handle = None


class StreamMerger:
    """Merges worker-{i}.jsonl files found in one work directory."""

    def __init__(self, work_dir: str | Path) -> None:
        self.work_dir = Path(work_dir)
        self.warnings = 0

    def _open_cursor(self, index: int) -> MergeCursor:
        path = worker_output_path(self.work_dir, index)
        try:
            handle = open(path, "r", encoding="utf-8")
        except FileNotFoundError:
            logger.warning(f"Worker file {path} is missing; treating it as empty")
            self.warnings += 1
            handle = None
        cursor = MergeCursor(index=index, handle=handle)
        cursor.advance()
        return cursor

    def merge(self, n_files: int) -> Iterator[ProgrammeRecord]:
        """
        Lazily yield every record of the n_files worker files in key order

        Ties go to the lowest worker index. Each emitted record costs one pass
        over the cursors, which is cheap since n_files is the worker count.
        """
        cursors = [self._open_cursor(index) for index in range(n_files)]
        emitted = 0
        try:
            while True:
                selected = None
                for cursor in cursors:
                    # Strict comparison keeps the earliest index on ties
                    if selected is None or cursor.current_key < selected.current_key:
                        selected = cursor

                if selected is None or selected.exhausted:
                    break

                record = selected.current_record
                selected.advance()
                emitted += 1
                yield record
        finally:
            for cursor in cursors:
                self.warnings += cursor.skipped
                cursor.close()
            logger.info(f"Merged {emitted} programmes from {n_files} worker files")
