"""One detection-and-submission run, from sitemap fetch to history record."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sitemap_submitter.config import Config
from sitemap_submitter.detector.sitemap_detector import SitemapDetector
from sitemap_submitter.errors import ConfigurationError
from sitemap_submitter.models import AggregateResult
from sitemap_submitter.monitoring.metrics import PrometheusExporter
from sitemap_submitter.normalizer import URLNormalizer
from sitemap_submitter.storage.cache_manager import CacheManager
from sitemap_submitter.submitter.error_handler import ErrorHandler
from sitemap_submitter.submitter.submitter import SearchEngineSubmitter

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Stage a run is in."""

    IDLE = "idle"
    DETECTING = "detecting"
    NORMALIZING = "normalizing"
    DISPATCHING = "dispatching"
    RECORDING = "recording"


@dataclass
class PipelineOutcome:
    """What a run did."""

    new_urls: List[str] = field(default_factory=list)
    normalized_urls: List[str] = field(default_factory=list)
    categories: Dict[str, List[str]] = field(default_factory=dict)
    result: Optional[AggregateResult] = None
    error_report: Optional[Dict[str, Any]] = None
    message: str = ""

    @property
    def submitted(self) -> bool:
        return self.result is not None

    @property
    def success(self) -> bool:
        """False only when URLs were dispatched and no search engine accepted any."""
        return self.result is None or self.result.success


class SubmissionPipeline:
    """Detects new sitemap URLs and submits them to the configured search engines."""

    def __init__(
        self,
        config: Config,
        test_mode: bool = False,
        cache_manager: Optional[CacheManager] = None,
        detector: Optional[SitemapDetector] = None,
        submitter: Optional[SearchEngineSubmitter] = None,
        metrics: Optional[PrometheusExporter] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Application configuration
            test_mode: Detect and normalize only; skip submission and history
            cache_manager: Cache manager (built from config when omitted)
            detector: Sitemap detector (built from config when omitted)
            submitter: Search engine submitter (built lazily when omitted)
            metrics: Optional PrometheusExporter
        """
        self.config = config
        self.test_mode = test_mode
        self.cache_manager = cache_manager or CacheManager(config)
        self.detector = detector or SitemapDetector(config, self.cache_manager)
        self.normalizer = URLNormalizer(config)
        self.metrics = metrics
        self._submitter = submitter
        self.state = PipelineState.IDLE

    def _transition(self, state: PipelineState) -> None:
        logger.debug(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state

    def check_environment(self) -> None:
        """
        Validate configuration and credentials before doing any work.

        Missing credentials are only a warning in test mode.

        Raises:
            ConfigurationError: If the configuration is invalid or credentials are missing
        """
        errors = self.config.validate()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}")

        missing = self.config.missing_credentials()
        if not missing:
            logger.info("Environment variables validated")
            return
        message = f"Missing required environment variables: {', '.join(missing)}"
        if self.test_mode:
            logger.warning(f"{message} (ignored in test mode)")
            return
        raise ConfigurationError(message)

    def _get_submitter(self) -> SearchEngineSubmitter:
        if self._submitter is None:
            self._submitter = SearchEngineSubmitter(
                self.config,
                error_handler=ErrorHandler(self.config.retry),
                metrics=self.metrics,
                cache_manager=self.cache_manager,
            )
        return self._submitter

    async def run(self) -> PipelineOutcome:
        """
        Execute one run.

        Provider-level failures are reported in the outcome and never raise,
        even when every search engine rejected every URL.

        Returns:
            PipelineOutcome

        Raises:
            ConfigurationError: If configuration or credentials are invalid
            SitemapFetchError: If the sitemap cannot be fetched or parsed
            SubmitterInitError: If no search engine client can be initialized
        """
        started = time.monotonic()
        succeeded = False
        try:
            outcome = await self._run()
            succeeded = outcome.success
            return outcome
        finally:
            self._transition(PipelineState.IDLE)
            if self.metrics is not None:
                self.metrics.record_run(succeeded, time.monotonic() - started)
                self.metrics.write_textfile()

    async def _run(self) -> PipelineOutcome:
        if self.test_mode:
            logger.info("Running in test mode, submissions are skipped")

        self.check_environment()
        self.cache_manager.initialize()

        self._transition(PipelineState.DETECTING)
        detection = await self.detector.detect_changes()
        if self.metrics is not None:
            self.metrics.record_urls_detected(len(detection.new_urls))

        if detection.sitemap_changed:
            self.cache_manager.save_sitemap_cache(detection.current_snapshot)

        if not detection.new_urls:
            logger.info("No new URLs to submit")
            return PipelineOutcome(message="no new URLs")

        self._transition(PipelineState.NORMALIZING)
        logger.debug(f"New URL stats: {self.normalizer.get_url_stats(detection.new_urls)}")
        normalized = self.normalizer.normalize_urls(detection.new_urls)
        if self.config.normalizer.filter_own_domain:
            normalized = self.normalizer.filter_own_domain(normalized)

        if not normalized:
            logger.warning("No valid URLs left after normalization")
            return PipelineOutcome(new_urls=detection.new_urls, message="no valid URLs")

        categories = self.normalizer.categorize_urls(normalized)
        outcome = PipelineOutcome(
            new_urls=detection.new_urls,
            normalized_urls=normalized,
            categories=categories,
        )

        if self.test_mode:
            logger.info(f"Test mode: skipping submission of {len(normalized)} URLs")
            for url in normalized:
                logger.info(f"Would submit: {url}")
            outcome.message = "test mode"
            return outcome

        self._transition(PipelineState.DISPATCHING)
        submitter = self._get_submitter()
        try:
            await submitter.initialize()
            result = await submitter.submit_urls(normalized)

            self._transition(PipelineState.RECORDING)
            self.cache_manager.record_submission(result)
            self._persist_quota(submitter)
            outcome.error_report = self._report_errors(submitter.error_handler, result)

            logger.info(f"Submission statistics: {submitter.get_stats()}")
            logger.info(f"Quota usage: {submitter.get_quota_info()}")
        finally:
            await submitter.close()

        outcome.result = result
        if result.success:
            outcome.message = "submitted"
        else:
            outcome.message = "all search engines failed"
            logger.error(f"No search engine accepted any of the {len(normalized)} URLs")
        return outcome

    @staticmethod
    def _report_errors(error_handler: ErrorHandler, result: AggregateResult) -> Optional[Dict[str, Any]]:
        """Log error statistics and recommendations for a cycle that had failures."""
        errors = [error.to_dict() for r in result.results for error in r.errors]
        if not errors:
            return None

        error_handler.log_error_statistics(errors)
        report = error_handler.generate_error_report(result.results)
        for recommendation in report["recommendations"]:
            logger.warning(f"Recommendation: {recommendation}")
        return report

    def _persist_quota(self, submitter: SearchEngineSubmitter) -> None:
        if not self.config.cache.persist_quota:
            return
        for client in submitter.clients:
            self.cache_manager.save_quota_state(client.name, client.quota)
