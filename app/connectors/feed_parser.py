"""
app/connectors/feed_parser.py

RSS 2.0 / Atom job feed parser producing normalized job records.
"""

from __future__ import annotations

import base64
import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from bs4 import BeautifulSoup

from app.domain.job_import import NormalizedJobRecord

logger = logging.getLogger(__name__)

UNKNOWN_COMPANY = "Unknown"
EXTERNAL_ID_MAX_LENGTH = 50

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


class FeedParseError(ValueError):
    """
    Raised when a document is not well-formed XML or is neither RSS nor Atom.
    """


def clean_text(value: str | None) -> str:
    if not value:
        return ""
    soup = BeautifulSoup(value, "html.parser")
    for node in soup(["script", "style"]):
        node.decompose()
    return soup.get_text(" ", strip=True).replace("\xa0", " ")


def generate_external_id(raw_id: str) -> str:
    encoded = base64.b64encode(raw_id.encode("utf-8")).decode("ascii")
    return _NON_ALNUM_RE.sub("", encoded)[:EXTERNAL_ID_MAX_LENGTH]


def parse_published_date(value: str | None) -> datetime | None:
    if not value or not value.strip():
        return None
    raw = value.strip()
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        normalized = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


class JobFeedParser:
    """
    Parse raw feed bytes into job records; malformed entries are skipped.
    """

    def parse(self, raw: bytes | str) -> list[NormalizedJobRecord]:
        try:
            root = ET.fromstring(raw)
        except ET.ParseError as exc:
            raise FeedParseError(f"Feed is not well-formed XML: {exc}") from exc

        root_name = _local_name(root.tag)
        if root_name in {"rss", "RDF"}:
            entries = [node for node in root.iter() if _local_name(node.tag) == "item"]
            build = self._parse_rss_item
        elif root_name == "feed":
            entries = [node for node in root if _local_name(node.tag) == "entry"]
            build = self._parse_atom_entry
        else:
            raise FeedParseError(f"Unsupported feed root element: {root_name}")

        records: list[NormalizedJobRecord] = []
        skipped = 0
        for index, entry in enumerate(entries):
            try:
                record = build(entry)
            except Exception as exc:
                logger.warning("Feed entry skipped index=%s error=%s", index, exc)
                record = None
            if record is None:
                skipped += 1
                continue
            records.append(record)

        logger.info("Feed parsed format=%s records=%s skipped=%s", root_name, len(records), skipped)
        return records

    def _parse_rss_item(self, item: ET.Element) -> NormalizedJobRecord | None:
        title = self._child_text(item, "title")
        company = self._child_text(item, "company") or self._child_text(item, "creator") or UNKNOWN_COMPANY
        link = self._child_text(item, "link")
        guid = self._child_text(item, "guid")
        if not clean_text(title) or not clean_text(company):
            return None

        raw_id = guid or self._child_text(item, "id") or link or f"{title}-{company}"
        return NormalizedJobRecord(
            external_id=generate_external_id(raw_id.strip()),
            title=clean_text(title),
            company=clean_text(company),
            location=clean_text(self._child_text(item, "location")) or None,
            description=clean_text(
                self._child_text(item, "description") or self._child_text(item, "summary")
            )
            or None,
            url=(link or guid or "").strip() or None,
            category=clean_text(self._child_text(item, "category")) or None,
            job_type=clean_text(
                self._child_text(item, "job_type") or self._child_text(item, "type")
            )
            or None,
            region=clean_text(self._child_text(item, "region")) or None,
            published_date=parse_published_date(
                self._child_text(item, "pubDate")
                or self._child_text(item, "published")
                or self._child_text(item, "date")
            ),
        )

    def _parse_atom_entry(self, entry: ET.Element) -> NormalizedJobRecord | None:
        title = self._child_text(entry, "title")
        company = self._author_name(entry) or self._child_text(entry, "creator") or UNKNOWN_COMPANY
        if not clean_text(title) or not clean_text(company):
            return None

        url = self._atom_link(entry)
        entry_id = self._child_text(entry, "id")
        raw_id = entry_id or url or f"{title}-{company}"
        return NormalizedJobRecord(
            external_id=generate_external_id(raw_id.strip()),
            title=clean_text(title),
            company=clean_text(company),
            description=clean_text(
                self._child_text(entry, "summary") or self._child_text(entry, "content")
            )
            or None,
            url=url or (entry_id.strip() if entry_id else None),
            published_date=parse_published_date(
                self._child_text(entry, "published")
                or self._child_text(entry, "updated")
                or self._child_text(entry, "date")
            ),
        )

    def _author_name(self, entry: ET.Element) -> str | None:
        for child in entry:
            if _local_name(child.tag) == "author":
                return self._child_text(child, "name") or (child.text or "").strip() or None
        return None

    @staticmethod
    def _atom_link(entry: ET.Element) -> str | None:
        fallback: str | None = None
        for child in entry:
            if _local_name(child.tag) != "link":
                continue
            href = (child.get("href") or child.text or "").strip()
            if not href:
                continue
            if child.get("rel", "alternate") == "alternate":
                return href
            fallback = fallback or href
        return fallback

    @staticmethod
    def _child_text(node: ET.Element, local_name: str) -> str | None:
        for child in list(node):
            if _local_name(child.tag) == local_name:
                text = "".join(child.itertext())
                return text if text.strip() else None
        return None
