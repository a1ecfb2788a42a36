"""Offline stand-in for a search engine API."""

import logging
import math
from typing import List, Optional

from sitemap_submitter.config import Config
from sitemap_submitter.errors import ErrorKind
from sitemap_submitter.models import Provider, QuotaState, SubmissionErrorEntry
from sitemap_submitter.submitter.providers.base import BatchOutcome, ProviderClient

logger = logging.getLogger(__name__)


class MockAPIClient(ProviderClient):
    """
    Accepts submissions without any network traffic.

    With ``failure_ratio`` set, the trailing share of each submission is
    rejected, which makes partial results reproducible in tests.
    """

    def __init__(
        self,
        config: Config,
        provider: str,
        failure_ratio: float = 0.0,
        quota: Optional[QuotaState] = None,
    ):
        if provider == Provider.GOOGLE.value:
            quota_limit = config.google.quota_limit
        else:
            quota_limit = config.bing.quota_limit
        super().__init__(config, provider, quota_limit, quota=quota)
        self.failure_ratio = failure_ratio

    async def initialize(self) -> None:
        logger.info(f"Initializing mock {self.name} API client")
        self.initialized = True

    async def _submit_allowed(self, urls: List[str]) -> BatchOutcome:
        failed_count = math.ceil(len(urls) * self.failure_ratio) if self.failure_ratio > 0 else 0
        split = len(urls) - failed_count
        submitted, failed = urls[:split], urls[split:]

        self.quota.consume(len(submitted))
        errors = [
            SubmissionErrorEntry(
                url=url,
                message="Simulated network error",
                kind=ErrorKind.NETWORK_ERROR.value,
            )
            for url in failed
        ]
        logger.info(f"Mock {self.name}: accepted {len(submitted)}, rejected {len(failed)}")
        return submitted, failed, errors

    async def check_connection(self) -> bool:
        logger.debug(f"Mock {self.name} connection check")
        return True

    def get_status(self):
        status = super().get_status()
        status["mock"] = True
        return status
