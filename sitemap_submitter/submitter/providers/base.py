"""Common behaviour for search engine API clients."""

import abc
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import aiohttp

from sitemap_submitter.config import Config
from sitemap_submitter.errors import ErrorKind
from sitemap_submitter.models import ProviderResult, QuotaState, SubmissionErrorEntry
from sitemap_submitter.submitter.error_handler import (
    ErrorHandler,
    classify_error,
    error_from_exception,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# URLs accepted, URLs rejected, and the errors explaining the rejections
BatchOutcome = Tuple[List[str], List[str], List[SubmissionErrorEntry]]


class ProviderClient(abc.ABC):
    """
    Base class for provider clients.

    Subclasses implement ``initialize``, ``check_connection`` and
    ``_submit_allowed``; the base class applies the quota gate, owns the
    client's QuotaState and the HTTP session, and builds the ProviderResult.
    """

    def __init__(
        self,
        config: Config,
        provider: str,
        quota_limit: int,
        error_handler: Optional[ErrorHandler] = None,
        session: Optional[aiohttp.ClientSession] = None,
        quota: Optional[QuotaState] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Application configuration
            provider: Provider name reported in results
            quota_limit: Maximum URLs accepted per quota period
            error_handler: Retry wrapper applied to each API call
            session: Optional shared HTTP session
            quota: Previously persisted quota state to continue from
        """
        self.config = config
        self.provider = provider
        self.quota = quota or QuotaState(used=0, limit=quota_limit)
        self.quota.limit = quota_limit
        self.error_handler = error_handler
        self.initialized = False
        self._session = session
        self._owns_session = session is None

    @property
    def name(self) -> str:
        return self.provider

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Resolve credentials and prepare the client."""

    @abc.abstractmethod
    async def check_connection(self) -> bool:
        """Return True if the provider API is reachable with the configured credentials."""

    @abc.abstractmethod
    async def _submit_allowed(self, urls: List[str]) -> BatchOutcome:
        """Submit URLs that already passed the quota gate."""

    async def submit_urls(self, urls: List[str]) -> ProviderResult:
        """
        Submit URLs to the provider.

        Args:
            urls: Normalized URLs to submit

        Returns:
            ProviderResult; ``success`` is True when at least one URL was accepted
        """
        urls = list(urls)
        logger.info(f"Submitting {len(urls)} URLs to {self.name}")

        if self.quota.exhausted:
            message = f"{self.name} quota exhausted ({self.quota.used}/{self.quota.limit})"
            logger.warning(f"{message}, skipping submission")
            return ProviderResult.failed_result(
                self.name,
                urls,
                message,
                kind=ErrorKind.QUOTA_ERROR.value,
                quota=self.quota.to_dict(),
            )

        if not self.initialized:
            await self.initialize()

        allowed, skipped = self._split_by_quota(urls)
        submitted, _, errors = await self._submit_allowed(allowed)

        if skipped:
            logger.warning(f"Insufficient {self.name} quota, skipped {len(skipped)} URLs")
            errors = errors + [
                SubmissionErrorEntry(
                    url=url,
                    message=f"{self.name} quota insufficient",
                    kind=ErrorKind.QUOTA_ERROR.value,
                )
                for url in skipped
            ]

        accepted = set(submitted)
        result = ProviderResult(
            provider=self.name,
            success=bool(submitted),
            submitted_urls=[url for url in urls if url in accepted],
            failed_urls=[url for url in urls if url not in accepted],
            errors=errors,
            quota=self.quota.to_dict(),
        )

        logger.info(
            f"{self.name} submission complete: submitted={len(result.submitted_urls)} "
            f"failed={len(result.failed_urls)} quota_remaining={self.quota.remaining}"
        )
        return result

    def _split_by_quota(self, urls: List[str]) -> Tuple[List[str], List[str]]:
        """Split URLs into those the remaining quota allows and the excess."""
        remaining = self.quota.remaining
        return urls[:remaining], urls[remaining:]

    async def _call(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """Run an API call through the retry wrapper when one is configured."""
        if self.error_handler is None:
            return await operation()
        return await self.error_handler.with_retry(operation, context)

    @staticmethod
    def _error_entry(url: Optional[str], error: BaseException) -> SubmissionErrorEntry:
        return SubmissionErrorEntry(url=url, message=str(error), kind=classify_error(error).value)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
    ) -> Tuple[int, Any]:
        """
        POST a JSON payload.

        Args:
            url: Endpoint URL
            payload: JSON-serializable body
            headers: Extra request headers
            timeout: Total request timeout in seconds

        Returns:
            Tuple of HTTP status and the decoded JSON body (raw text if not JSON)

        Raises:
            SubmissionError: On timeout or connection failure (classified as network errors)
        """
        request_headers = {"Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)

        session = self._get_session()
        try:
            async with session.post(
                url,
                json=payload,
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                text = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise error_from_exception(e) from e

        try:
            body = json.loads(text) if text else None
        except ValueError:
            body = text
        return status, body

    def get_quota_info(self) -> Dict[str, int]:
        return self.quota.to_dict()

    def reset_quota(self) -> None:
        self.quota.reset()
        logger.info(f"{self.name} quota reset")

    def get_status(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "initialized": self.initialized,
            "quota": self.get_quota_info(),
        }

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
