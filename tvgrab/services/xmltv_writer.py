"""
XMLTV Writer

Streams channel declarations and programmes as an XMLTV document. Programmes
are written one at a time, so the merged stream is never held in memory.
"""
from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import BinaryIO

from lxml import etree  # type: ignore

from tvgrab.schemas import CREDIT_ROLES, ChannelDeclaration, ProgrammeRecord
from tvgrab.utils.timezone import format_xmltv_time


logger = logging.getLogger(__name__)

GENERATOR_NAME = "tvgrab"


def channel_element(channel: ChannelDeclaration) -> etree._Element:
    element = etree.Element("channel", id=channel.channel_id)
    etree.SubElement(element, "display-name").text = channel.display_name
    etree.SubElement(element, "display-name").text = str(channel.channel_number)
    return element


def programme_element(record: ProgrammeRecord) -> etree._Element:
    """Build a <programme> element with children in XMLTV DTD order"""
    if record.start_time is None:
        raise ValueError(f"Programme {record.programme_id} has no start time")

    attrib = {"start": format_xmltv_time(record.start_time)}
    if record.stop_time is not None:
        attrib["stop"] = format_xmltv_time(record.stop_time)
    attrib["channel"] = record.channel_id
    element = etree.Element("programme", attrib)

    etree.SubElement(element, "title").text = record.title
    if record.description:
        etree.SubElement(element, "desc").text = record.description

    if record.credits:
        credits = etree.SubElement(element, "credits")
        for role in CREDIT_ROLES:
            for credit in record.credits:
                if credit.role == role:
                    etree.SubElement(credits, role).text = credit.name

    if record.air_date:
        etree.SubElement(element, "date").text = record.air_date
    for category in record.categories:
        etree.SubElement(element, "category").text = category
    if record.episode:
        episode = etree.SubElement(element, "episode-num", system="onscreen")
        episode.text = record.episode
    if record.rating:
        rating = etree.SubElement(element, "rating", system="VCHIP")
        etree.SubElement(rating, "value").text = record.rating

    return element


class XmltvWriter:
    """
    Incremental XMLTV output sink

    Use as a context manager; channels must be written before programmes.
    """

    def __init__(self, stream: BinaryIO, generator_name: str = GENERATOR_NAME) -> None:
        self.stream = stream
        self.generator_name = generator_name
        self.channels_written = 0
        self.programmes_written = 0
        self._stack: ExitStack | None = None
        self._xf = None

    def __enter__(self) -> "XmltvWriter":
        self._stack = ExitStack()
        self._xf = self._stack.enter_context(etree.xmlfile(self.stream, encoding="utf-8"))
        self._xf.write_declaration()
        self._stack.enter_context(self._xf.element("tv", {"generator-info-name": self.generator_name}))
        self._xf.write("\n")
        return self

    def __exit__(self, *exc_info) -> None:
        if self._stack is not None:
            if exc_info[0] is None:
                self._xf.write("\n")
            self._stack.__exit__(*exc_info)
            self._stack = None
            self._xf = None
        self.stream.flush()

    def write_channel(self, channel: ChannelDeclaration) -> None:
        if self.programmes_written:
            raise RuntimeError("Channels must be written before programmes")
        self._xf.write(channel_element(channel), pretty_print=True)
        self.channels_written += 1

    def write_programme(self, record: ProgrammeRecord) -> None:
        self._xf.write(programme_element(record), pretty_print=True)
        self.programmes_written += 1
