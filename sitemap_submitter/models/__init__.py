"""Data models shared across the submission pipeline."""

from sitemap_submitter.models.sitemap import SitemapSnapshot, UrlEntry, sort_by_recency
from sitemap_submitter.models.submission import (
    AggregateResult,
    Provider,
    ProviderResult,
    ProviderStatus,
    QuotaState,
    SubmissionErrorEntry,
)

__all__ = [
    "AggregateResult",
    "Provider",
    "ProviderResult",
    "ProviderStatus",
    "QuotaState",
    "SitemapSnapshot",
    "SubmissionErrorEntry",
    "UrlEntry",
    "sort_by_recency",
]
