"""URL normalization, validation and categorization for sitemap URLs."""

import logging
import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

from sitemap_submitter.config import Config
from sitemap_submitter.errors import InvalidUrlError

logger = logging.getLogger(__name__)

# Stacked suffixes such as ".html.html" are removed together
_HTML_SUFFIX_RE = re.compile(r"(?:\.html?)+$", re.IGNORECASE)
# Any whitespace or ASCII control character invalidates a URL
_FORBIDDEN_CHARS_RE = re.compile(r"[\s\x00-\x1f\x7f]")

_ARTICLE_PATTERNS = (
    re.compile(r"^/[^/]+/[^/]+/?$"),
    re.compile(r"^/\d{4}/\d{2}/[^/]+/?$"),
    re.compile(r"^/posts?/[^/]+/?$"),
    re.compile(r"^/articles?/[^/]+/?$"),
    re.compile(r"^/blog/[^/]+/?$"),
)

CATEGORY_NAMES = ("homepage", "articles", "categories", "tags", "pages", "others")


def remove_html_suffix(url: str) -> str:
    """
    Strip trailing ``.html`` or ``.htm`` suffixes (stacked ones included) from the URL path.

    Query strings and fragments are kept; the suffix must end the path.

    Args:
        url: URL string

    Returns:
        URL without the suffix
    """
    parsed = urlparse(url)
    if not _HTML_SUFFIX_RE.search(parsed.path):
        return url
    return parsed._replace(path=_HTML_SUFFIX_RE.sub("", parsed.path)).geturl()


def is_valid_url(url: object) -> bool:
    """Return True for absolute http(s) URLs with a host and no whitespace or control chars."""
    if not isinstance(url, str) or not url.strip():
        return False
    if _FORBIDDEN_CHARS_RE.search(url):
        return False

    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
        # Accessing port validates it
        parsed.port
    except ValueError:
        return False

    return parsed.scheme in ("http", "https") and bool(hostname)


def normalize_url(url: str) -> str:
    """
    Normalize a single URL.

    Args:
        url: Raw URL string

    Returns:
        Normalized URL

    Raises:
        InvalidUrlError: If the input is not a valid absolute http(s) URL
    """
    if not isinstance(url, str):
        raise InvalidUrlError(f"URL must be a string, got {type(url).__name__}")

    normalized = remove_html_suffix(url.strip())
    if not is_valid_url(normalized):
        raise InvalidUrlError(f"Invalid URL: {url!r}")
    return normalized


def normalize(raw_urls: Iterable[str]) -> List[str]:
    """
    Normalize a batch of URLs.

    Invalid entries are dropped and duplicates (after normalization) are
    removed keeping the first occurrence. Applying it twice gives the same
    result as applying it once.

    Args:
        raw_urls: Raw URL strings

    Returns:
        Normalized, valid, unique URLs in first-seen order
    """
    seen = set()
    result = []
    for url in raw_urls:
        if not isinstance(url, str):
            continue
        candidate = remove_html_suffix(url)
        if not is_valid_url(candidate) or candidate in seen:
            continue
        seen.add(candidate)
        result.append(candidate)
    return result


def belongs_to_domain(url: str, domain_url: str) -> bool:
    """Return True if both URLs share the same hostname."""
    try:
        return urlparse(url).hostname == urlparse(domain_url).hostname
    except ValueError:
        return False


class URLNormalizer:
    """Normalizes sitemap URLs with logging of what was dropped and why."""

    def __init__(self, config: Config):
        """
        Initialize the normalizer.

        Args:
            config: Application configuration; the sitemap URL defines the site domain
        """
        self.config = config
        self.base_url: Optional[str] = config.sitemap.site_url

    def normalize_urls(self, urls: List[str]) -> List[str]:
        """
        Normalize URLs, logging invalid and duplicate entries.

        Args:
            urls: Raw URLs, typically the new URLs from the sitemap diff

        Returns:
            Normalized unique URLs in first-seen order
        """
        logger.info(f"Normalizing {len(urls)} URLs")

        normalized: List[str] = []
        seen = set()
        invalid: List[str] = []
        duplicates: List[str] = []

        for url in urls:
            try:
                candidate = normalize_url(url)
            except InvalidUrlError as e:
                invalid.append(url)
                logger.warning(f"Skipping invalid URL: {e}")
                continue

            if candidate in seen:
                duplicates.append(url)
                logger.debug(f"Duplicate URL: {url} -> {candidate}")
                continue

            if candidate != url:
                logger.debug(f"Normalized URL: {url} -> {candidate}")
            seen.add(candidate)
            normalized.append(candidate)

        logger.info(
            f"URL normalization complete: input={len(urls)} valid={len(normalized)} "
            f"invalid={len(invalid)} duplicates={len(duplicates)}"
        )
        return normalized

    def filter_own_domain(self, urls: List[str]) -> List[str]:
        """
        Keep only URLs on the same host as the sitemap.

        Args:
            urls: Normalized URLs

        Returns:
            URLs belonging to the site
        """
        if not self.base_url:
            logger.warning("Cannot determine site domain, skipping domain filter")
            return list(urls)

        kept = [url for url in urls if belongs_to_domain(url, self.base_url)]
        dropped = len(urls) - len(kept)
        if dropped:
            logger.info(f"Filtered out {dropped} URLs from external domains")
        return kept

    def categorize_urls(self, urls: List[str]) -> Dict[str, List[str]]:
        """
        Group URLs into coarse content categories by path pattern.

        Used for reporting only.

        Args:
            urls: Normalized URLs

        Returns:
            Mapping of category name to URLs
        """
        categories: Dict[str, List[str]] = {name: [] for name in CATEGORY_NAMES}

        for url in urls:
            categories[self._category_for(url)].append(url)

        counts = {name: len(items) for name, items in categories.items() if items}
        if counts:
            logger.info(f"URL categories: {counts}")
        return categories

    @staticmethod
    def _category_for(url: str) -> str:
        try:
            path = urlparse(url).path.lower()
        except ValueError:
            return "others"

        if path in ("", "/"):
            return "homepage"
        if "/category/" in path or "/categories/" in path:
            return "categories"
        if "/tag/" in path or "/tags/" in path:
            return "tags"
        if "/page/" in path:
            return "pages"
        if any(pattern.match(path) for pattern in _ARTICLE_PATTERNS):
            return "articles"
        return "others"

    @staticmethod
    def get_url_stats(urls: List[str]) -> Dict[str, int]:
        """Counts of total, unique, duplicate and ``.html``-suffixed URLs."""
        unique = len(set(urls))
        with_suffix = sum(1 for url in urls if url.lower().endswith((".html", ".htm")))
        return {
            "total": len(urls),
            "withHtmlSuffix": with_suffix,
            "withoutHtmlSuffix": len(urls) - with_suffix,
            "unique": unique,
            "duplicates": len(urls) - unique,
        }
