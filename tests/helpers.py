"""Shared fakes and page builders for the test suite."""
import multiprocessing
from datetime import datetime, timedelta, timezone

from tvgrab.schemas import ProgrammeRecord, WorkerEntry
from tvgrab.services.fetcher import FetchError


LISTING_URL = "http://listings.test/grid?start={start}&hours={hours}"
DETAIL_URL = "http://listings.test/program?id={programme_id}"

PACIFIC = timezone(timedelta(hours=-8))


def fork_context():
    return multiprocessing.get_context("fork")


class FakeFetcher:
    """Serves canned pages by URL; unknown URLs fail like a network error."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.requests = []
        self.closed = False

    def get(self, url):
        self.requests.append(url)
        if url not in self.pages:
            raise FetchError(url, "HTTP 404 (client error)")
        return self.pages[url]

    def close(self):
        self.closed = True


def listing_url(start):
    return LISTING_URL.format(start=start, hours=12)


def listing_page(rows):
    """rows: (channel_number, name, [programme id or None per slot])"""
    parts = ["<html><body><table class='grid'>"]
    for number, name, cells in rows:
        parts.append(f"<tr data-channel-number='{number}'><th>{name}</th>")
        for cell in cells:
            if cell is None:
                parts.append("<td class='slot empty'></td>")
            else:
                parts.append(f"<td class='slot'><a href='#' data-program-id='{cell}'>{cell}</a></td>")
        parts.append("</tr>")
    parts.append("</table></body></html>")
    return "".join(parts)


def detail_page(title, airtime=None, duration=None, **extra):
    parts = ["<html><body><div class='program'>"]
    if title:
        parts.append(f"<h1 class='title'>{title}</h1>")
    if airtime:
        parts.append(f"<span class='airtime'>{airtime}</span>")
    if duration:
        parts.append(f"<span class='duration'>{duration}</span>")
    if extra.get("description"):
        parts.append(f"<p class='desc'>{extra['description']}</p>")
    if extra.get("rating"):
        parts.append(f"<span class='rating'>{extra['rating']}</span>")
    if extra.get("air_date"):
        parts.append(f"<span class='original-air-date'>{extra['air_date']}</span>")
    for category in extra.get("categories", []):
        parts.append(f"<span class='category'>{category}</span>")
    if extra.get("credits"):
        parts.append("<ul class='credits'>")
        for role, name in extra["credits"]:
            parts.append(f"<li data-role='{role}'>{name}</li>")
        parts.append("</ul>")
    parts.append("</div></body></html>")
    return "".join(parts)


def make_record(channel_id, start, title="Show", programme_id=None):
    return ProgrammeRecord(
        channel_id=channel_id,
        programme_id=programme_id,
        start_time=start,
        title=title,
    )


def write_worker_file(path, records):
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(WorkerEntry.from_record(record).model_dump_json() + "\n")


def base_time():
    return datetime(2005, 1, 15, 0, 0, tzinfo=PACIFIC)
