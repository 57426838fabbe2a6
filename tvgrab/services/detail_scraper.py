"""
Detail Scraper

Resolves one programme id into a ProgrammeRecord: fetches the detail page,
extracts the raw fields and converts the reported wall-clock time into
absolute start and stop times.
"""
from __future__ import annotations

import logging
import re
from typing import Callable

from lxml import etree  # type: ignore
from lxml import html  # type: ignore
from pydantic import ValidationError

from tvgrab.schemas import CREDIT_ROLES, Credit, ProgrammeRecord
from tvgrab.services.fetch_types import DetailFields, ScanContext, TaskRecord
from tvgrab.services.fetcher import FetchError, Fetcher
from tvgrab.utils.timezone import (
    TimeFormatError,
    compute_stop_time,
    localize,
    parse_duration_minutes,
    parse_local_time,
)


logger = logging.getLogger(__name__)

DetailParser = Callable[[str], DetailFields]

_CREDIT_ROLE_ALIASES = {
    "host": "presenter",
    "cast": "actor",
    "guest star": "guest",
    "executive producer": "producer",
}
_AIR_DATE = re.compile(r"^(?P<month>\d{1,2})/(?P<day>\d{1,2})/(?P<year>\d{4})$|^(?P<only_year>\d{4})$")


class DetailParseError(ValueError):
    """Raised when a detail page has no usable programme"""
    pass


def parse_detail_page(content: str) -> DetailFields:
    """
    Parse a programme detail page

    Raises:
        DetailParseError: If the page is empty or has no title
    """
    try:
        document = html.fromstring(content)
    except (etree.ParserError, ValueError) as e:
        raise DetailParseError(f"Unparseable detail page: {e}") from e

    fields = DetailFields(
        title=_class_text(document, "title"),
        description=_class_text(document, "desc"),
        airtime=_class_text(document, "airtime"),
        duration=_class_text(document, "duration"),
        rating=_class_text(document, "rating"),
        air_date=_class_text(document, "original-air-date"),
        episode=_class_text(document, "episode"),
        categories=[
            text for text in (node.text_content().strip() for node in _by_class(document, "category")) if text
        ],
    )

    for credits in _by_class(document, "credits"):
        for item in credits.iterfind(".//li"):
            name = item.text_content().strip()
            if name:
                fields.credits.append(((item.get("data-role") or "").strip().lower(), name))

    if not fields.title:
        raise DetailParseError("Detail page has no title")
    return fields


def _by_class(document: etree._Element, name: str) -> list:
    return document.xpath(f"//*[contains(concat(' ', normalize-space(@class), ' '), ' {name} ')]")


def _class_text(document: etree._Element, name: str) -> str | None:
    nodes = _by_class(document, name)
    if not nodes:
        return None
    text = " ".join(nodes[0].text_content().split())
    return text or None


class DetailScraper:
    """
    Detail fetch step run inside each worker

    Picklable; the Fetcher is created lazily in the process that uses it.
    """

    def __init__(
        self,
        url_template: str,
        context: ScanContext,
        parser: DetailParser = parse_detail_page,
        fetcher_factory: Callable[[], Fetcher] | None = None,
    ) -> None:
        self.url_template = url_template
        self.context = context
        self.parser = parser
        self.fetcher_factory = fetcher_factory or Fetcher
        self._fetcher = None

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        state["_fetcher"] = None
        return state

    @property
    def fetcher(self):
        if self._fetcher is None:
            self._fetcher = self.fetcher_factory()
        return self._fetcher

    def close(self) -> None:
        if self._fetcher is not None and hasattr(self._fetcher, "close"):
            self._fetcher.close()
        self._fetcher = None

    def __call__(self, task: TaskRecord) -> ProgrammeRecord | None:
        return self.fetch_detail(task)

    def fetch_detail(self, task: TaskRecord) -> ProgrammeRecord | None:
        """
        Fetch and parse one programme

        Returns:
            The record, or None when the page cannot be fetched or parsed
        """
        url = self.url_template.format(programme_id=task.programme_id)
        try:
            content = self.fetcher.get(url)
        except FetchError as e:
            logger.warning(f"Skipping programme {task.programme_id}: {e}")
            return None

        try:
            fields = self.parser(content)
        except DetailParseError as e:
            logger.warning(f"Skipping programme {task.programme_id}: {e}")
            return None

        try:
            return self.build_record(task, fields)
        except ValidationError as e:
            logger.warning(f"Skipping programme {task.programme_id}: invalid record: {e}")
            return None

    def build_record(self, task: TaskRecord, fields: DetailFields) -> ProgrammeRecord:
        """Convert raw page fields into a record, leaving out whatever the page omits"""
        start_time = None
        stop_time = None
        if fields.airtime:
            try:
                local = parse_local_time(fields.airtime, self.context.now)
                start_time = localize(local, self.context.utc_offset_hours, self.context.observes_dst)
            except TimeFormatError as e:
                logger.warning(f"Programme {task.programme_id}: {e}")

        if start_time is not None and fields.duration:
            try:
                stop_time = compute_stop_time(start_time, parse_duration_minutes(fields.duration))
            except TimeFormatError as e:
                logger.info(f"Programme {task.programme_id}: ignoring duration: {e}")

        return ProgrammeRecord(
            channel_id=task.channel_id,
            programme_id=task.programme_id,
            start_time=start_time,
            stop_time=stop_time,
            title=fields.title or "",
            description=fields.description,
            credits=self._credits(task, fields.credits),
            categories=fields.categories,
            rating=fields.rating,
            air_date=self._air_date(task, fields.air_date),
            episode=fields.episode,
        )

    def _credits(self, task: TaskRecord, raw: list[tuple[str, str]]) -> list[Credit]:
        credits = []
        for role, name in raw:
            role = _CREDIT_ROLE_ALIASES.get(role, role)
            if role not in CREDIT_ROLES:
                logger.info(f"Programme {task.programme_id}: ignoring credit with unknown role '{role}'")
                continue
            credits.append(Credit(role=role, name=name))
        return credits

    def _air_date(self, task: TaskRecord, raw: str | None) -> str | None:
        if not raw:
            return None
        match = _AIR_DATE.match(raw.strip())
        if not match:
            logger.info(f"Programme {task.programme_id}: ignoring air date '{raw}'")
            return None
        if match.group("only_year"):
            return match.group("only_year")
        return f"{match.group('year')}{int(match.group('month')):02d}{int(match.group('day')):02d}"
