"""
Listing Scanner

Discovers which programmes exist by walking the listing grid one fixed-size
time window at a time. Only channel rows and opaque programme ids are
extracted here; programme details are resolved later by the detail scraper.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterator, Protocol

from lxml import etree  # type: ignore
from lxml import html  # type: ignore

from tvgrab.services.fetch_types import ChannelEntry, ListingRow, ScanContext, ScanWindow, TaskRecord
from tvgrab.services.fetcher import FetchError
from tvgrab.utils.logging_helpers import log_window_processing


logger = logging.getLogger(__name__)

LISTING_TIME_FORMAT = "%Y-%m-%dT%H:%M"

ListingParser = Callable[[str], list[ListingRow]]


class PageFetcher(Protocol):
    def get(self, url: str) -> str: ...


class ScanPrerequisiteError(RuntimeError):
    """Raised when the listing cannot be reached at all"""
    pass


def channel_id_for(channel_number: int, suffix: str) -> str:
    """Stable channel ID; zero padding keeps lexicographic and numeric order equal"""
    return f"{channel_number:05d}.{suffix}"


def parse_listing_page(content: str) -> list[ListingRow]:
    """
    Parse a listing grid page

    Each channel is a table row carrying `data-channel-number`, with the name in
    `data-channel-name` or the row header. Every `td` is one time slot; a slot
    holds a programme when it or a descendant carries `data-program-id`.

    Args:
        content: HTML page content

    Returns:
        List of rows in page order
    """
    try:
        document = html.fromstring(content)
    except (etree.ParserError, ValueError) as e:
        logger.warning(f"Unparseable listing page: {e}")
        return []

    rows = []
    for row in document.iterfind(".//tr[@data-channel-number]"):
        raw_number = (row.get("data-channel-number") or "").strip()
        if not raw_number.isdigit():
            logger.debug(f"Skipping row with non-numeric channel number '{raw_number}'")
            continue

        name = row.get("data-channel-name")
        if not name:
            header = row.find("th")
            name = header.text_content().strip() if header is not None else raw_number

        cells = tuple(_cell_programme_id(cell) for cell in row.iterfind("td"))
        rows.append(ListingRow(channel_number=int(raw_number), channel_name=name, cells=cells))

    return rows


def _cell_programme_id(cell: etree._Element) -> str | None:
    programme_id = cell.get("data-program-id")
    if not programme_id:
        found = cell.xpath(".//*[@data-program-id]/@data-program-id")
        programme_id = found[0] if found else None
    return programme_id.strip() if programme_id and programme_id.strip() else None


class ListingScanner:
    """Windowed listing scan producing per-channel programme id sequences."""

    def __init__(
        self,
        fetcher: PageFetcher,
        url_template: str,
        parser: ListingParser = parse_listing_page,
    ) -> None:
        self.fetcher = fetcher
        self.url_template = url_template
        self.parser = parser
        self.warnings = 0

    def window_url(self, window: ScanWindow, hours: int) -> str:
        return self.url_template.format(
            start=window.start.strftime(LISTING_TIME_FORMAT),
            hours=hours,
        )

    def scan(self, context: ScanContext) -> dict[int, ChannelEntry]:
        """
        Scan every window of the context's range, then one lookahead window
        for channels whose last slot was empty

        Returns:
            Mapping of channel number -> ChannelEntry

        Raises:
            ScanPrerequisiteError: If the first listing page cannot be fetched
        """
        channels: dict[int, ChannelEntry] = {}
        windows = list(context.windows())

        for idx, window in enumerate(windows, start=1):
            url = self.window_url(window, context.window_hours)
            log_window_processing(logger, idx, len(windows), url)
            rows = self._fetch_rows(url, first=idx == 1)
            if rows is None:
                continue
            for row in rows:
                if not context.wants(row.channel_number):
                    continue
                self._apply_row(channels, row)

        carried = {number for number, entry in channels.items() if entry.carry_flag}
        if carried:
            self._scan_lookahead(channels, carried, context)

        logger.info(
            f"Listing scan found {len(channels)} channels, "
            f"{sum(len(entry.programme_ids) for entry in channels.values())} programmes"
        )
        return channels

    def _fetch_rows(self, url: str, first: bool) -> list[ListingRow] | None:
        try:
            content = self.fetcher.get(url)
        except FetchError as e:
            if first:
                raise ScanPrerequisiteError(f"Cannot reach listing: {e}") from e
            logger.warning(f"Skipping listing window: {e}")
            self.warnings += 1
            return None
        return self.parser(content)

    def _apply_row(self, channels: dict[int, ChannelEntry], row: ListingRow) -> None:
        entry = channels.get(row.channel_number)
        if entry is None:
            entry = ChannelEntry(channel_number=row.channel_number, channel_name=row.channel_name)
            channels[row.channel_number] = entry

        for programme_id in row.cells:
            if programme_id is not None:
                entry.append(programme_id)

        # An empty last slot hides a programme that only shows up in the next window
        entry.carry_flag = bool(row.cells) and row.cells[-1] is None

    def _scan_lookahead(
        self,
        channels: dict[int, ChannelEntry],
        carried: set[int],
        context: ScanContext,
    ) -> None:
        url = self.window_url(context.lookahead_window(), context.window_hours)
        logger.info(f"Lookahead scan for {len(carried)} channels with an open last slot: {url}")
        rows = self._fetch_rows(url, first=False)
        if rows is None:
            return

        for row in rows:
            if row.channel_number not in carried:
                continue
            entry = channels[row.channel_number]
            # Only a programme starting right at the boundary continues the open slot
            first_id = row.cells[0] if row.cells else None
            if first_id is not None and entry.append(first_id):
                logger.debug(f"Recovered programme {first_id} on channel {row.channel_number}")
            entry.carry_flag = False


def build_tasks(channels: dict[int, ChannelEntry], channel_id_suffix: str) -> Iterator[TaskRecord]:
    """
    Enumerate tasks channel by channel in ascending numeric order

    Keeps each channel's programmes contiguous and in first-seen order.
    """
    for number in sorted(channels):
        channel_id = channel_id_for(number, channel_id_suffix)
        for programme_id in channels[number].programme_ids:
            yield TaskRecord(channel_id=channel_id, programme_id=programme_id)
