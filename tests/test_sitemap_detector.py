"""Tests for sitemap parsing and change detection."""

import asyncio
import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from sitemap_submitter.config import Config
from sitemap_submitter.detector.sitemap_detector import (
    SitemapDetector,
    generate_hash,
    parse_sitemap,
)
from sitemap_submitter.errors import SitemapFetchError
from sitemap_submitter.models import SitemapSnapshot, UrlEntry, sort_by_recency

SITEMAP_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url>
    <loc>https://example.com/a</loc>
    <lastmod>2024-01-01</lastmod>
    <changefreq>daily</changefreq>
    <priority>0.8</priority>
  </url>
  <url>
    <loc>https://example.com/b</loc>
    <lastmod>2024-01-02T08:00:00Z</lastmod>
  </url>
</urlset>
"""


def make_snapshot(entries, content_hash="hash"):
    """Build a snapshot from (location, lastmod) pairs."""
    return SitemapSnapshot(
        urls=[UrlEntry(location=loc, last_modified=lastmod) for loc, lastmod in entries],
        content_hash=content_hash,
    )


class TestParseSitemap(unittest.TestCase):
    """Test cases for sitemap XML parsing."""

    def test_parse_namespaced_urlset(self):
        """Test parsing a standard sitemap with the sitemaps.org namespace."""
        entries = parse_sitemap(SITEMAP_XML)

        self.assertEqual([e.location for e in entries], ["https://example.com/a", "https://example.com/b"])
        self.assertEqual(entries[0].last_modified, "2024-01-01")
        self.assertEqual(entries[0].change_frequency, "daily")
        self.assertEqual(entries[0].priority, 0.8)
        self.assertIsNone(entries[1].change_frequency)
        self.assertIsNone(entries[1].priority)

    def test_parse_without_namespace(self):
        """Test parsing a sitemap without a namespace, skipping entries without loc."""
        content = """<urlset>
            <url><loc> https://example.com/x </loc></url>
            <url><lastmod>2024-01-01</lastmod></url>
        </urlset>"""

        entries = parse_sitemap(content)

        self.assertEqual([e.location for e in entries], ["https://example.com/x"])

    def test_invalid_optional_fields_are_dropped(self):
        """Test unknown changefreq and out-of-range priority become None."""
        content = """<urlset><url>
            <loc>https://example.com/x</loc>
            <changefreq>sometimes</changefreq>
            <priority>1.5</priority>
        </url></urlset>"""

        entry = parse_sitemap(content)[0]

        self.assertIsNone(entry.change_frequency)
        self.assertIsNone(entry.priority)

    def test_sitemap_index_yields_nothing(self):
        """Test a sitemap index is not followed."""
        content = """<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
            <sitemap><loc>https://example.com/sitemap-1.xml</loc></sitemap>
        </sitemapindex>"""

        with self.assertLogs("sitemap_submitter.detector.sitemap_detector", level="WARNING"):
            entries = parse_sitemap(content)

        self.assertEqual(entries, [])

    def test_malformed_xml_raises(self):
        """Test malformed XML raises a fetch error."""
        with self.assertRaises(SitemapFetchError):
            parse_sitemap(b"<urlset><url><loc>broken")

    def test_generate_hash(self):
        """Test the content hash is the MD5 of the raw body."""
        self.assertEqual(generate_hash("abc"), "900150983cd24fb0d6963f7d28e17f72")
        self.assertEqual(generate_hash(b"abc"), generate_hash("abc"))


class TestSnapshot(unittest.TestCase):
    """Test cases for snapshot invariants."""

    def test_duplicate_locations_keep_latest(self):
        """Test duplicate locations collapse to the most recently modified entry."""
        snapshot = make_snapshot([
            ("https://example.com/a", "2024-01-01"),
            ("https://example.com/b", None),
            ("https://example.com/a", "2024-03-01"),
        ])

        self.assertEqual(snapshot.locations, ["https://example.com/a", "https://example.com/b"])
        self.assertEqual(snapshot.urls[0].last_modified, "2024-03-01")

    def test_sort_by_recency_reduced_dates(self):
        """Test year-month and fractional-second lastmod values sort as dated."""
        entries = [
            UrlEntry("https://example.com/old", "2020-01-01"),
            UrlEntry("https://example.com/new", "2024-06"),
            UrlEntry("https://example.com/undated", None),
            UrlEntry("https://example.com/frac", "2024-05-01T10:00:00.5+08:00"),
        ]

        ordered = [entry.location for entry in sort_by_recency(entries)]

        self.assertEqual(ordered, [
            "https://example.com/new",
            "https://example.com/frac",
            "https://example.com/old",
            "https://example.com/undated",
        ])

    def test_reduced_lastmod_formats(self):
        """Test reduced W3C dates are read as the start of their period."""
        self.assertEqual(
            UrlEntry("https://example.com/a", "2024-06").last_modified_at,
            datetime(2024, 6, 1, tzinfo=timezone.utc),
        )
        self.assertEqual(
            UrlEntry("https://example.com/a", "2024").last_modified_at,
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        self.assertEqual(
            UrlEntry("https://example.com/a", "2024-01-02T08:00:00Z").last_modified_at,
            datetime(2024, 1, 2, 8, tzinfo=timezone.utc),
        )
        self.assertIsNone(UrlEntry("https://example.com/a", "yesterday").last_modified_at)


class TestSitemapDetector(unittest.TestCase):
    """Test cases for the SitemapDetector class."""

    def setUp(self):
        """Set up test environment."""
        self.config = Config()
        self.config.sitemap.url = "https://example.com/sitemap.xml"
        self.cache_manager = MagicMock()
        self.cache_manager.get_cached_sitemap.return_value = None
        self.detector = SitemapDetector(self.config, self.cache_manager)

    def test_first_run_selects_most_recent(self):
        """Test a first run picks the newest URLs, undated ones last."""
        current = make_snapshot([
            ("https://example.com/old", "2023-01-01"),
            ("https://example.com/undated", None),
            ("https://example.com/d1", "2024-01-01"),
            ("https://example.com/d2", "2024-01-02"),
            ("https://example.com/d3", "2024-01-03"),
            ("https://example.com/d4", "2024-01-04"),
            ("https://example.com/d5", "2024-01-05"),
        ])

        new_urls = self.detector.compare_and_extract_new(current, None)

        self.assertEqual(new_urls, [
            "https://example.com/d5",
            "https://example.com/d4",
            "https://example.com/d3",
            "https://example.com/d2",
            "https://example.com/d1",
        ])

    def test_first_run_example(self):
        """Test the two-URL first run returns newest first."""
        current = make_snapshot([
            ("https://example.com/A", "2024-01-01"),
            ("https://example.com/B", "2024-01-02"),
        ])

        self.assertEqual(
            self.detector.compare_and_extract_new(current, None),
            ["https://example.com/B", "https://example.com/A"],
        )

    def test_unchanged_hash_returns_nothing(self):
        """Test identical hashes short-circuit the diff."""
        current = make_snapshot([("https://example.com/new", None)], content_hash="same")
        cached = make_snapshot([], content_hash="same")

        self.assertEqual(self.detector.compare_and_extract_new(current, cached), [])

    def test_diff_preserves_sitemap_order(self):
        """Test new URLs are the set difference in current order."""
        current = make_snapshot([
            ("https://example.com/c", None),
            ("https://example.com/a", None),
            ("https://example.com/b", None),
        ], content_hash="new")
        cached = make_snapshot([("https://example.com/a", None)], content_hash="old")

        self.assertEqual(
            self.detector.compare_and_extract_new(current, cached),
            ["https://example.com/c", "https://example.com/b"],
        )

    def test_anomalous_delta_is_capped(self):
        """Test a delta above the threshold is limited to the most recent URLs."""
        entries = [
            (f"https://example.com/p{day}", f"2024-01-{day:02d}") for day in range(1, 26)
        ]
        current = make_snapshot(entries, content_hash="new")
        cached = make_snapshot([], content_hash="old")

        with self.assertLogs("sitemap_submitter.detector.sitemap_detector", level="WARNING"):
            new_urls = self.detector.compare_and_extract_new(current, cached)

        self.assertEqual(len(new_urls), 10)
        self.assertEqual(new_urls[0], "https://example.com/p25")
        self.assertEqual(new_urls[-1], "https://example.com/p16")

    def test_delta_at_threshold_is_not_capped(self):
        """Test exactly threshold-many new URLs are all returned."""
        entries = [(f"https://example.com/p{i}", None) for i in range(20)]
        current = make_snapshot(entries, content_hash="new")
        cached = make_snapshot([], content_hash="old")

        self.assertEqual(len(self.detector.compare_and_extract_new(current, cached)), 20)

    def test_detect_changes(self):
        """Test detection fetches, diffs against the cache and reports snapshots."""
        with patch.object(self.detector, "_download", AsyncMock(return_value=SITEMAP_XML)):
            result = asyncio.run(self.detector.detect_changes())

        self.assertEqual(result.new_urls, ["https://example.com/b", "https://example.com/a"])
        self.assertTrue(result.is_first_run)
        self.assertTrue(result.sitemap_changed)
        self.assertEqual(result.current_snapshot.content_hash, generate_hash(SITEMAP_XML))
        self.cache_manager.get_cached_sitemap.assert_called_once()

    def test_detect_changes_unchanged(self):
        """Test a cached snapshot with the same hash yields no URLs."""
        cached = SitemapSnapshot(
            urls=parse_sitemap(SITEMAP_XML), content_hash=generate_hash(SITEMAP_XML)
        )
        self.cache_manager.get_cached_sitemap.return_value = cached

        with patch.object(self.detector, "_download", AsyncMock(return_value=SITEMAP_XML)):
            result = asyncio.run(self.detector.detect_changes())

        self.assertEqual(result.new_urls, [])
        self.assertFalse(result.sitemap_changed)

    def test_fetch_timeout_raises_fetch_error(self):
        """Test a timeout surfaces as a SitemapFetchError."""
        with patch.object(self.detector, "_download", AsyncMock(side_effect=asyncio.TimeoutError())):
            with self.assertRaises(SitemapFetchError):
                asyncio.run(self.detector.fetch_sitemap())

    def test_fetch_connection_error_raises_fetch_error(self):
        """Test a connection failure surfaces as a SitemapFetchError."""
        error = aiohttp.ClientConnectionError("connection refused")
        with patch.object(self.detector, "_download", AsyncMock(side_effect=error)):
            with self.assertRaises(SitemapFetchError):
                asyncio.run(self.detector.detect_changes())

    def test_http_error_status_raises_fetch_error(self):
        """Test a non-2xx response surfaces as a SitemapFetchError with the status."""
        response = MagicMock()
        response.status = 404
        response.__aenter__ = AsyncMock(return_value=response)
        response.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.get.return_value = response
        detector = SitemapDetector(self.config, self.cache_manager, session=session)

        with self.assertRaises(SitemapFetchError) as ctx:
            asyncio.run(detector.fetch_sitemap())

        self.assertEqual(ctx.exception.status, 404)
        _, kwargs = session.get.call_args
        self.assertEqual(kwargs["headers"]["User-Agent"], self.config.sitemap.user_agent)


if __name__ == "__main__":
    unittest.main()
