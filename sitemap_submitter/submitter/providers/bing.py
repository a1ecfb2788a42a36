"""Bing client submitting through IndexNow or the legacy Webmaster API."""

import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from sitemap_submitter.config import BING_KEY_ENV, Config
from sitemap_submitter.errors import ConfigurationError, SubmissionError
from sitemap_submitter.models import Provider, QuotaState
from sitemap_submitter.submitter.error_handler import ErrorHandler, error_from_response
from sitemap_submitter.submitter.providers.base import BatchOutcome, ProviderClient

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = (200, 202)


def chunk(items: List[str], size: int) -> List[List[str]]:
    """Split a list into consecutive chunks of at most ``size`` items."""
    return [items[i:i + size] for i in range(0, len(items), size)]


def _detail(body: Any) -> str:
    if isinstance(body, dict) and body.get("Message"):
        return str(body["Message"])
    if isinstance(body, str) and body:
        return body
    return "no error message returned"


class BingWebmasterClient(ProviderClient):
    """
    Submits URLs to Bing in batches.

    Each batch is one request and succeeds or fails as a whole.
    """

    def __init__(
        self,
        config: Config,
        error_handler: Optional[ErrorHandler] = None,
        session: Optional[aiohttp.ClientSession] = None,
        quota: Optional[QuotaState] = None,
    ):
        super().__init__(
            config,
            Provider.BING.value,
            config.bing.quota_limit,
            error_handler=error_handler,
            session=session,
            quota=quota,
        )
        self.settings = config.bing
        self.api_key: Optional[str] = None
        self.site_url: Optional[str] = None
        self.hostname: Optional[str] = None

    @property
    def api_type(self) -> str:
        return "IndexNow" if self.settings.use_indexnow else "Legacy"

    async def initialize(self) -> None:
        """
        Resolve the API key and the site host from configuration.

        Raises:
            ConfigurationError: If the key is missing or the sitemap URL has no host
        """
        logger.info("Initializing Bing API client")

        if not self.config.bing_api_key:
            raise ConfigurationError(f"Missing {BING_KEY_ENV} environment variable")

        site_url = self.config.sitemap.site_url
        hostname = self.config.sitemap.hostname
        if not site_url or not hostname:
            raise ConfigurationError("Cannot determine site address from the sitemap URL")

        self.api_key = self.config.bing_api_key
        self.site_url = site_url
        self.hostname = hostname
        self.initialized = True
        logger.info(f"Bing API client initialized (api={self.api_type}, host={hostname})")

    def _request(self, urls: List[str]) -> Dict[str, Any]:
        """Build the payload and headers for the configured API variant."""
        if self.settings.use_indexnow:
            payload: Dict[str, Any] = {
                "host": self.hostname,
                "key": self.api_key,
                "urlList": urls,
            }
            if self.settings.key_location:
                payload["keyLocation"] = self.settings.key_location
            return {"payload": payload, "headers": {}}

        return {
            "payload": {"siteUrl": self.site_url, "urlList": urls},
            "headers": {"apikey": self.api_key},
        }

    async def _submit_batch(self, urls: List[str], timeout: Optional[float] = None) -> None:
        request = self._request(urls)
        status, body = await self._post_json(
            self.settings.api_url,
            request["payload"],
            headers=request["headers"],
            timeout=timeout or self.settings.timeout_sec,
        )

        if self.settings.use_indexnow:
            if status not in _SUCCESS_STATUSES:
                raise error_from_response("Bing", status, _detail(body))
            return

        if status != 200:
            raise error_from_response("Bing", status, _detail(body))
        if isinstance(body, dict) and body.get("ErrorCode"):
            raise SubmissionError(
                f"Bing API error ({body['ErrorCode']}): {body.get('Message', '')}",
                status=status,
            )

    async def _submit_allowed(self, urls: List[str]) -> BatchOutcome:
        submitted: List[str] = []
        failed: List[str] = []
        errors = []

        batches = chunk(urls, self.settings.batch_size)
        for index, batch in enumerate(batches, start=1):
            logger.debug(f"Submitting Bing batch {index}/{len(batches)} ({len(batch)} URLs)")
            try:
                await self._call(
                    functools.partial(self._submit_batch, batch),
                    {"provider": self.name, "batch": index},
                )
                submitted.extend(batch)
                self.quota.consume(len(batch))
                logger.debug(f"Bing batch {index} accepted")
            except Exception as e:
                failed.extend(batch)
                errors.extend(self._error_entry(url, e) for url in batch)
                logger.warning(f"Bing batch {index} failed: {e}")

            if index < len(batches):
                await asyncio.sleep(self.settings.batch_delay_sec)

        return submitted, failed, errors

    async def check_connection(self) -> bool:
        """Post an empty URL list and check the API accepts the credentials."""
        try:
            if not self.initialized:
                await self.initialize()
            await self._submit_batch([], timeout=self.settings.connection_timeout_sec)
        except Exception as e:
            logger.error(f"Bing API connection check failed: {e}")
            return False

        logger.debug(f"Bing {self.api_type} API connection OK")
        return True

    def get_status(self):
        status = super().get_status()
        status["siteUrl"] = self.site_url
        status["apiType"] = self.api_type
        return status
