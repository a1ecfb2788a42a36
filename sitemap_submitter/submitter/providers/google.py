"""Google Indexing API client."""

import asyncio
import functools
import json
import logging
from typing import Any, List, Optional

import aiohttp
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from sitemap_submitter.config import GOOGLE_KEY_ENV, Config
from sitemap_submitter.errors import ConfigurationError, ErrorKind, SubmissionError
from sitemap_submitter.models import Provider, QuotaState
from sitemap_submitter.submitter.error_handler import ErrorHandler, error_from_response
from sitemap_submitter.submitter.providers.base import BatchOutcome, ProviderClient

logger = logging.getLogger(__name__)


def _error_message(body: Any) -> str:
    """Extract ``error.message`` from a Google API error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    if isinstance(body, str) and body:
        return body
    return "no error message returned"


class GoogleIndexingClient(ProviderClient):
    """Submits URLs one at a time to the Google Indexing API."""

    def __init__(
        self,
        config: Config,
        error_handler: Optional[ErrorHandler] = None,
        session: Optional[aiohttp.ClientSession] = None,
        quota: Optional[QuotaState] = None,
    ):
        super().__init__(
            config,
            Provider.GOOGLE.value,
            config.google.quota_limit,
            error_handler=error_handler,
            session=session,
            quota=quota,
        )
        self.settings = config.google
        self.credentials: Optional[service_account.Credentials] = None

    def _load_credentials(self) -> service_account.Credentials:
        raw_key = self.config.google_service_account_key
        if not raw_key:
            raise ConfigurationError(f"Missing {GOOGLE_KEY_ENV} environment variable")

        try:
            info = json.loads(raw_key)
        except ValueError as e:
            raise ConfigurationError(f"{GOOGLE_KEY_ENV} is not valid JSON") from e

        try:
            return service_account.Credentials.from_service_account_info(
                info, scopes=self.settings.scopes
            )
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"{GOOGLE_KEY_ENV} is not a valid service account key: {e}") from e

    async def _refresh_token(self) -> str:
        """Fetch a fresh access token, mapping auth library failures onto the taxonomy."""
        # Token requests share the API request timeout
        request = functools.partial(Request(), timeout=self.settings.timeout_sec)
        try:
            await asyncio.to_thread(self.credentials.refresh, request)
        except google_auth_exceptions.TransportError as e:
            raise SubmissionError(
                f"Network error while fetching Google access token: {e}",
                kind=ErrorKind.NETWORK_ERROR,
            ) from e
        except google_auth_exceptions.RefreshError as e:
            raise SubmissionError(
                f"Authentication failed: {e}", kind=ErrorKind.AUTH_ERROR
            ) from e
        return self.credentials.token

    async def _access_token(self) -> str:
        if not self.credentials.valid:
            return await self._refresh_token()
        return self.credentials.token

    async def initialize(self) -> None:
        """
        Load the service account key and verify it can obtain an access token.

        Raises:
            ConfigurationError: If the key is missing or malformed
            SubmissionError: If the token request fails
        """
        logger.info("Initializing Google Indexing API client")
        self.credentials = self._load_credentials()
        await self._refresh_token()
        self.initialized = True
        logger.info("Google Indexing API client initialized")

    async def _submit_single(self, url: str) -> None:
        token = await self._access_token()
        status, body = await self._post_json(
            self.settings.endpoint,
            {"url": url, "type": "URL_UPDATED"},
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.settings.timeout_sec,
        )
        if status != 200:
            raise error_from_response("Google", status, _error_message(body))

    async def _submit_allowed(self, urls: List[str]) -> BatchOutcome:
        submitted: List[str] = []
        failed: List[str] = []
        errors = []

        for index, url in enumerate(urls):
            try:
                await self._call(
                    functools.partial(self._submit_single, url),
                    {"provider": self.name, "url": url},
                )
                submitted.append(url)
                self.quota.consume(1)
                logger.debug(f"Submitted to Google: {url}")
            except Exception as e:
                failed.append(url)
                errors.append(self._error_entry(url, e))
                logger.warning(f"Failed to submit to Google: {url}: {e}")

            if index < len(urls) - 1:
                await asyncio.sleep(self.settings.request_delay_sec)

        return submitted, failed, errors

    async def check_connection(self) -> bool:
        """Verify that an access token can be obtained."""
        try:
            if self.credentials is None:
                self.credentials = self._load_credentials()
            token = await self._refresh_token()
        except Exception as e:
            logger.error(f"Google API connection check failed: {e}")
            return False

        if not token:
            logger.warning("Google API connection check failed: no access token returned")
            return False
        logger.debug("Google API connection OK")
        return True

    def get_status(self):
        status = super().get_status()
        status["authenticated"] = self.credentials is not None and self.credentials.valid
        return status
