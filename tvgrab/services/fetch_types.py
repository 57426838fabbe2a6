"""
Shared dataclasses used across the grabbing pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterator


@dataclass(frozen=True, slots=True)
class ScanWindow:
    """One fixed-size listing window in local wall-clock time."""
    start: datetime
    end: datetime


@dataclass(frozen=True, slots=True)
class ScanContext:
    """Run-wide scan parameters, computed once at start and shared read-only."""
    now: datetime
    scan_start: datetime
    scan_end: datetime
    window_hours: int
    utc_offset_hours: int
    observes_dst: bool = True
    channel_filter: frozenset[int] | None = None

    @classmethod
    def build(
        cls,
        now: datetime,
        *,
        days: int,
        day_offset: int = 0,
        window_hours: int = 3,
        utc_offset_hours: int = 0,
        observes_dst: bool = True,
        channel_filter: frozenset[int] | None = None,
    ) -> ScanContext:
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        scan_start = midnight + timedelta(days=day_offset)
        return cls(
            now=now,
            scan_start=scan_start,
            scan_end=scan_start + timedelta(days=days),
            window_hours=window_hours,
            utc_offset_hours=utc_offset_hours,
            observes_dst=observes_dst,
            channel_filter=channel_filter,
        )

    def windows(self) -> Iterator[ScanWindow]:
        step = timedelta(hours=self.window_hours)
        start = self.scan_start
        while start < self.scan_end:
            yield ScanWindow(start, start + step)
            start += step

    def lookahead_window(self) -> ScanWindow:
        return ScanWindow(self.scan_end, self.scan_end + timedelta(hours=self.window_hours))

    def wants(self, channel_number: int) -> bool:
        return self.channel_filter is None or channel_number in self.channel_filter


@dataclass(slots=True)
class ChannelEntry:
    """Per-channel accumulator filled during the listing scan."""
    channel_number: int
    channel_name: str
    programme_ids: list[str] = field(default_factory=list)
    carry_flag: bool = False

    def append(self, programme_id: str) -> bool:
        """Append an id unless it repeats the last one. Returns True if appended."""
        if self.programme_ids and self.programme_ids[-1] == programme_id:
            return False
        self.programme_ids.append(programme_id)
        return True


@dataclass(frozen=True, slots=True)
class ListingRow:
    """One channel row of a listing page; a cell is a programme id or None when empty."""
    channel_number: int
    channel_name: str
    cells: tuple[str | None, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskRecord:
    """Unit of detail-fetch work, one per discovered programme."""
    channel_id: str
    programme_id: str


@dataclass(slots=True)
class DetailFields:
    """Raw, unconverted fields pulled from a programme detail page."""
    title: str | None = None
    description: str | None = None
    airtime: str | None = None
    duration: str | None = None
    rating: str | None = None
    air_date: str | None = None
    episode: str | None = None
    categories: list[str] = field(default_factory=list)
    credits: list[tuple[str, str]] = field(default_factory=list)


__all__ = [
    "ScanWindow",
    "ScanContext",
    "ChannelEntry",
    "ListingRow",
    "TaskRecord",
    "DetailFields",
]
