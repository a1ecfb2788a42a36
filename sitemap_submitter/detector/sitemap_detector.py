"""Fetches the remote sitemap and works out which URLs are new since the last run."""

import asyncio
import hashlib
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Union

import aiohttp

from sitemap_submitter.config import Config
from sitemap_submitter.errors import SitemapFetchError
from sitemap_submitter.models import SitemapSnapshot, UrlEntry, sort_by_recency
from sitemap_submitter.storage.cache_manager import CacheManager

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    """Strip an ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def parse_sitemap(content: Union[str, bytes]) -> List[UrlEntry]:
    """
    Parse a sitemaps.org 0.9 document into URL entries.

    Element names are matched without regard to namespace. A ``sitemapindex``
    document is not followed and yields no entries.

    Args:
        content: Raw XML body

    Returns:
        Entries in document order; ``<url>`` elements without ``<loc>`` are skipped

    Raises:
        SitemapFetchError: If the document is not well-formed XML
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise SitemapFetchError(f"Failed to parse sitemap XML: {e}") from e

    root_name = _local_name(root.tag)
    if root_name == "sitemapindex":
        logger.warning("Sitemap index detected; nested sitemaps are not followed")
        return []
    if root_name != "urlset":
        logger.warning(f"Unexpected sitemap root element <{root_name}>, no URLs extracted")
        return []

    entries = []
    for element in root:
        if _local_name(element.tag) != "url":
            continue
        location = _child_text(element, "loc")
        if not location:
            continue
        entries.append(
            UrlEntry(
                location=location,
                last_modified=_child_text(element, "lastmod"),
                change_frequency=_child_text(element, "changefreq"),
                priority=_child_text(element, "priority"),
            )
        )
    return entries


def generate_hash(content: Union[str, bytes]) -> str:
    """MD5 hex digest of the raw sitemap body."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.md5(content).hexdigest()


@dataclass
class DetectionResult:
    """URLs to submit plus the snapshots they were derived from."""

    new_urls: List[str] = field(default_factory=list)
    current_snapshot: Optional[SitemapSnapshot] = None
    cached_snapshot: Optional[SitemapSnapshot] = None

    @property
    def is_first_run(self) -> bool:
        return self.cached_snapshot is None

    @property
    def sitemap_changed(self) -> bool:
        """True when the sitemap body differs from the cached one (or nothing was cached)."""
        if self.cached_snapshot is None or self.current_snapshot is None:
            return True
        return self.current_snapshot.content_hash != self.cached_snapshot.content_hash


class SitemapDetector:
    """Diffs the live sitemap against the cached snapshot."""

    def __init__(
        self,
        config: Config,
        cache_manager: CacheManager,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the detector.

        Args:
            config: Application configuration
            cache_manager: Source of the previously saved snapshot
            session: Optional shared HTTP session (one is created per fetch otherwise)
        """
        self.config = config
        self.sitemap_url = config.sitemap.url
        self.cache_manager = cache_manager
        self.session = session
        self.detection = config.detection

    async def _download(self) -> bytes:
        """GET the sitemap body, raising on any HTTP or transport failure."""
        timeout = aiohttp.ClientTimeout(total=self.config.sitemap.timeout_sec)
        headers = {"User-Agent": self.config.sitemap.user_agent}

        owns_session = self.session is None
        session = self.session or aiohttp.ClientSession()
        try:
            async with session.get(self.sitemap_url, timeout=timeout, headers=headers) as response:
                if not 200 <= response.status < 300:
                    raise SitemapFetchError(
                        f"Failed to fetch sitemap: HTTP {response.status}",
                        status=response.status,
                    )
                return await response.read()
        finally:
            if owns_session:
                await session.close()

    async def fetch_sitemap(self) -> SitemapSnapshot:
        """
        Fetch and parse the live sitemap.

        Returns:
            Snapshot of the current sitemap with its content hash

        Raises:
            SitemapFetchError: On timeout, connection failure, non-2xx status or malformed XML
        """
        logger.debug(f"Fetching sitemap: {self.sitemap_url}")

        try:
            body = await self._download()
        except SitemapFetchError:
            raise
        except asyncio.TimeoutError as e:
            raise SitemapFetchError("Timed out fetching sitemap, check network connectivity") from e
        except aiohttp.ClientError as e:
            raise SitemapFetchError(f"Failed to fetch sitemap: {e}") from e

        entries = parse_sitemap(body)
        return SitemapSnapshot(urls=entries, content_hash=generate_hash(body))

    def compare_and_extract_new(
        self,
        current: SitemapSnapshot,
        cached: Optional[SitemapSnapshot],
    ) -> List[str]:
        """
        Work out which URLs of the current snapshot should be submitted.

        Args:
            current: Freshly fetched snapshot
            cached: Snapshot from the previous run, if any

        Returns:
            URLs to submit
        """
        if cached is None:
            limit = self.detection.first_run_limit
            selected = [entry.location for entry in sort_by_recency(current.urls)[:limit]]
            logger.info(f"First run: selected the {len(selected)} most recent URLs")
            return selected

        if current.content_hash == cached.content_hash:
            logger.debug("Sitemap hash unchanged")
            return []

        known = set(cached.locations)
        added = [entry for entry in current.urls if entry.location not in known]

        if len(added) > self.detection.anomaly_threshold:
            limit = self.detection.anomaly_limit
            logger.warning(
                f"Detected {len(added)} new URLs, which suggests a stale cache; "
                f"limiting to the {limit} most recent"
            )
            return [entry.location for entry in sort_by_recency(added)[:limit]]

        return [entry.location for entry in added]

    async def detect_changes(self) -> DetectionResult:
        """
        Fetch the sitemap and diff it against the cached snapshot.

        Returns:
            DetectionResult with the new URLs and both snapshots

        Raises:
            SitemapFetchError: If the sitemap cannot be fetched or parsed
        """
        logger.info("Checking sitemap for changes")

        try:
            current = await self.fetch_sitemap()
        except SitemapFetchError as e:
            logger.error(f"Sitemap detection failed: {e}")
            raise
        logger.info(f"Fetched sitemap with {len(current.urls)} URLs")

        cached = self.cache_manager.get_cached_sitemap()
        new_urls = self.compare_and_extract_new(current, cached)

        if new_urls:
            logger.info(f"Detected {len(new_urls)} new URLs")
            for url in new_urls:
                logger.debug(f"New URL: {url}")
        else:
            logger.info("No new URLs detected")

        return DetectionResult(new_urls=new_urls, current_snapshot=current, cached_snapshot=cached)
