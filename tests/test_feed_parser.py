"""
tests/test_feed_parser.py

Coverage
--------
- RSS 2.0 items with job extension fields
- Atom entries (author, alternate link)
- Company fallback chain and entries without a title
- External id derivation
- Malformed XML and unsupported documents
- Description cleanup: markup, entities, script and style bodies
- Date parsing
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.connectors.feed_parser import (
    FeedParseError,
    JobFeedParser,
    clean_text,
    generate_external_id,
    parse_published_date,
)

RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:job_listing="https://jobicy.com">
  <channel>
    <title>Remote Jobs</title>
    <item>
      <title>Senior Data Scientist</title>
      <link>https://jobicy.com/jobs/1001-senior-data-scientist</link>
      <guid isPermaLink="false">https://jobicy.com/?post_type=job_listing&amp;p=1001</guid>
      <pubDate>Mon, 05 Jan 2026 09:30:00 +0000</pubDate>
      <description><![CDATA[<p>Model things&nbsp;at scale</p>]]></description>
      <job_listing:company>Data Corp</job_listing:company>
      <job_listing:location>Europe</job_listing:location>
      <job_listing:job_type>Full-Time</job_listing:job_type>
      <category>Data Science</category>
    </item>
    <item>
      <title>Copywriter</title>
      <link>https://jobicy.com/jobs/1002-copywriter</link>
      <dc:creator>Words Ltd</dc:creator>
    </item>
    <item>
      <title>Mystery Role</title>
      <link>https://jobicy.com/jobs/1003</link>
    </item>
    <item>
      <link>https://jobicy.com/jobs/1004-untitled</link>
      <job_listing:company>Nobody</job_listing:company>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Higher Ed Jobs</title>
  <entry>
    <title>Assistant Professor</title>
    <id>urn:uuid:60a76c80-d399-11d9-b93C-0003939e0af6</id>
    <link rel="self" href="https://example.edu/api/jobs/1"/>
    <link rel="alternate" href="https://example.edu/jobs/1"/>
    <author><name>State University</name></author>
    <updated>2026-01-04T08:00:00Z</updated>
    <summary>Teach courses</summary>
  </entry>
</feed>
"""


@pytest.fixture()
def parser() -> JobFeedParser:
    return JobFeedParser()


class TestRss:
    def test_parses_items_with_extension_fields(self, parser: JobFeedParser) -> None:
        records = parser.parse(RSS_FEED)
        first = records[0]

        assert first.title == "Senior Data Scientist"
        assert first.company == "Data Corp"
        assert first.location == "Europe"
        assert first.job_type == "Full-Time"
        assert first.category == "Data Science"
        assert first.description == "Model things at scale"
        assert first.url == "https://jobicy.com/jobs/1001-senior-data-scientist"
        assert first.published_date == datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
        assert first.external_id == generate_external_id("https://jobicy.com/?post_type=job_listing&p=1001")

    def test_company_falls_back_to_creator_then_unknown(self, parser: JobFeedParser) -> None:
        records = parser.parse(RSS_FEED)
        assert [record.company for record in records[1:]] == ["Words Ltd", "Unknown"]

    def test_item_without_title_is_skipped(self, parser: JobFeedParser) -> None:
        titles = [record.title for record in parser.parse(RSS_FEED)]
        assert len(titles) == 3
        assert "Nobody" not in titles

    def test_external_id_falls_back_to_link(self, parser: JobFeedParser) -> None:
        records = parser.parse(RSS_FEED)
        assert records[1].external_id == generate_external_id("https://jobicy.com/jobs/1002-copywriter")

    def test_channel_without_items_yields_nothing(self, parser: JobFeedParser) -> None:
        assert parser.parse(b"<rss><channel><title>Empty</title></channel></rss>") == []


class TestAtom:
    def test_parses_entry(self, parser: JobFeedParser) -> None:
        [record] = parser.parse(ATOM_FEED)

        assert record.title == "Assistant Professor"
        assert record.company == "State University"
        assert record.url == "https://example.edu/jobs/1"
        assert record.description == "Teach courses"
        assert record.published_date == datetime(2026, 1, 4, 8, 0, tzinfo=timezone.utc)
        assert record.external_id == generate_external_id("urn:uuid:60a76c80-d399-11d9-b93C-0003939e0af6")


class TestInvalidDocuments:
    def test_malformed_xml(self, parser: JobFeedParser) -> None:
        with pytest.raises(FeedParseError):
            parser.parse(b"<rss><channel><item></channel>")

    def test_unsupported_root(self, parser: JobFeedParser) -> None:
        with pytest.raises(FeedParseError, match="Unsupported feed root"):
            parser.parse(b"<html><body>Service unavailable</body></html>")


class TestHelpers:
    def test_external_id_is_alphanumeric_and_bounded(self) -> None:
        external_id = generate_external_id("https://example.com/jobs/" + "x" * 200)
        assert external_id.isalnum()
        assert len(external_id) == 50

    def test_external_id_is_stable(self) -> None:
        assert generate_external_id("abc") == generate_external_id("abc") == "YWJj"

    def test_clean_text_strips_markup_and_entities(self) -> None:
        assert clean_text("<b>R&amp;D</b>&nbsp;Lead ") == "R&D Lead"
        assert clean_text(None) == ""

    def test_clean_text_keeps_literal_angle_brackets(self) -> None:
        assert clean_text("<p>Experience: 3<5 years, salary > 40k</p>") == "Experience: 3<5 years, salary > 40k"

    def test_clean_text_drops_script_and_style_bodies(self) -> None:
        raw = "<style>p{color:red}</style><p>Hello</p><script>track()</script>"
        assert clean_text(raw) == "Hello"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Tue, 06 Jan 2026 12:00:00 GMT", datetime(2026, 1, 6, 12, 0, tzinfo=timezone.utc)),
            ("2026-01-06T12:00:00Z", datetime(2026, 1, 6, 12, 0, tzinfo=timezone.utc)),
            ("2026-01-06T12:00:00", datetime(2026, 1, 6, 12, 0, tzinfo=timezone.utc)),
            ("not a date", None),
            ("", None),
        ],
    )
    def test_parse_published_date(self, raw: str, expected: datetime | None) -> None:
        assert parse_published_date(raw) == expected
