"""Prometheus metrics for monitoring the Sitemap Submitter."""

import logging
import os
import time
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile

from sitemap_submitter.models import ProviderResult

logger = logging.getLogger(__name__)

# Runs are one-shot, so metrics are exported through the node_exporter textfile collector
REGISTRY = CollectorRegistry()

URLS_DETECTED = Counter(
    "sitemap_submitter_urls_detected_total",
    "Number of new sitemap URLs detected",
    registry=REGISTRY,
)

URLS_SUBMITTED = Counter(
    "sitemap_submitter_urls_submitted_total",
    "Number of URLs accepted by a search engine",
    ["provider"],
    registry=REGISTRY,
)

URLS_FAILED = Counter(
    "sitemap_submitter_urls_failed_total",
    "Number of URLs a search engine did not accept",
    ["provider"],
    registry=REGISTRY,
)

API_ERRORS = Counter(
    "sitemap_submitter_api_errors_total",
    "Number of search engine API errors by kind",
    ["provider", "error_type"],
    registry=REGISTRY,
)

QUOTA_REMAINING = Gauge(
    "sitemap_submitter_quota_remaining",
    "Remaining submission quota",
    ["provider"],
    registry=REGISTRY,
)

LAST_RUN_TIMESTAMP = Gauge(
    "sitemap_submitter_last_run_timestamp_seconds",
    "Unix timestamp of the last completed run",
    registry=REGISTRY,
)

LAST_RUN_SUCCESS = Gauge(
    "sitemap_submitter_last_run_success",
    "1 if the last run succeeded, 0 otherwise",
    registry=REGISTRY,
)

RUN_DURATION = Histogram(
    "sitemap_submitter_run_duration_seconds",
    "Duration of a full detection and submission run in seconds",
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
    registry=REGISTRY,
)


class PrometheusExporter:
    """Records pipeline metrics and writes them to a textfile."""

    def __init__(self, textfile_path: Optional[str] = None):
        """
        Initialize the exporter.

        Args:
            textfile_path: Where ``write_textfile`` writes the metrics
        """
        self.textfile_path = textfile_path

    def record_urls_detected(self, count: int) -> None:
        URLS_DETECTED.inc(count)

    def record_provider_result(self, result: ProviderResult) -> None:
        """
        Record the outcome of one provider's submission.

        Args:
            result: Provider result
        """
        URLS_SUBMITTED.labels(provider=result.provider).inc(len(result.submitted_urls))
        URLS_FAILED.labels(provider=result.provider).inc(len(result.failed_urls))
        for error in result.errors:
            API_ERRORS.labels(provider=result.provider, error_type=error.kind).inc()
        if "remaining" in result.quota:
            self.set_quota_remaining(result.provider, result.quota["remaining"])

    def set_quota_remaining(self, provider: str, remaining: int) -> None:
        QUOTA_REMAINING.labels(provider=provider).set(remaining)

    def record_run(self, success: bool, duration_sec: float) -> None:
        """
        Record a completed run.

        Args:
            success: Whether the run succeeded
            duration_sec: Wall-clock duration of the run
        """
        RUN_DURATION.observe(duration_sec)
        LAST_RUN_SUCCESS.set(1 if success else 0)
        LAST_RUN_TIMESTAMP.set(time.time())

    def write_textfile(self) -> bool:
        """
        Write all metrics to the configured textfile.

        Returns:
            True if the file was written
        """
        if not self.textfile_path:
            return False
        try:
            directory = os.path.dirname(self.textfile_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            write_to_textfile(self.textfile_path, REGISTRY)
        except OSError as e:
            logger.error(f"Failed to write metrics textfile {self.textfile_path}: {e}")
            return False
        logger.info(f"Wrote metrics to {self.textfile_path}")
        return True
