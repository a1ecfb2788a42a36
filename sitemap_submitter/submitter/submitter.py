"""Fans URL submissions out to every configured search engine and aggregates the outcome."""

import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional

from sitemap_submitter.config import Config
from sitemap_submitter.errors import SubmitterInitError
from sitemap_submitter.models import AggregateResult, Provider, ProviderResult, ProviderStatus
from sitemap_submitter.submitter.error_handler import ErrorHandler, classify_error
from sitemap_submitter.submitter.providers.base import ProviderClient
from sitemap_submitter.submitter.providers.bing import BingWebmasterClient
from sitemap_submitter.submitter.providers.google import GoogleIndexingClient
from sitemap_submitter.submitter.providers.mock import MockAPIClient

logger = logging.getLogger(__name__)


def build_clients(
    config: Config,
    error_handler: Optional[ErrorHandler] = None,
    cache_manager: Optional[Any] = None,
) -> List[ProviderClient]:
    """
    Create the provider clients selected by configuration.

    ``MOCK_API_CALLS`` swaps in offline clients for every provider;
    ``DISABLE_GOOGLE_API`` / ``DISABLE_BING_API`` leave a provider out.

    Args:
        config: Application configuration
        error_handler: Retry wrapper shared by the real clients
        cache_manager: Source of persisted quota state when ``cache.persist_quota`` is on

    Returns:
        Clients in provider order (Google first)
    """
    def persisted_quota(provider: Provider, limit: int):
        if cache_manager is None or not config.cache.persist_quota:
            return None
        return cache_manager.load_quota_state(provider.value, limit)

    google_quota = persisted_quota(Provider.GOOGLE, config.google.quota_limit)
    bing_quota = persisted_quota(Provider.BING, config.bing.quota_limit)

    clients: List[ProviderClient] = []
    if config.mock_api_calls:
        logger.info("Mock API mode enabled")
        if not config.disable_google:
            clients.append(MockAPIClient(config, Provider.GOOGLE.value, quota=google_quota))
        if not config.disable_bing:
            clients.append(MockAPIClient(config, Provider.BING.value, quota=bing_quota))
        return clients

    if not config.disable_google:
        clients.append(GoogleIndexingClient(config, error_handler=error_handler, quota=google_quota))
    if not config.disable_bing:
        clients.append(BingWebmasterClient(config, error_handler=error_handler, quota=bing_quota))
    return clients


def _engine_stats() -> Dict[str, int]:
    return {"submitted": 0, "successful": 0, "failed": 0}


def _empty_stats() -> Dict[str, Any]:
    return {
        "totalSubmissions": 0,
        "successfulSubmissions": 0,
        "failedSubmissions": 0,
        "engines": {provider.value: _engine_stats() for provider in Provider},
    }


class SearchEngineSubmitter:
    """
    Submits URLs to every active provider concurrently.

    A provider that fails (at initialization or submission) never prevents
    the others from completing; its failure is reported as a failed
    ProviderResult.
    """

    def __init__(
        self,
        config: Config,
        clients: Optional[List[ProviderClient]] = None,
        error_handler: Optional[ErrorHandler] = None,
        metrics: Optional[Any] = None,
        cache_manager: Optional[Any] = None,
    ):
        """
        Initialize the submitter.

        Args:
            config: Application configuration
            clients: Provider clients to use (built from configuration when omitted)
            error_handler: Retry wrapper for client initialization and submission
            metrics: Optional PrometheusExporter
            cache_manager: Used for persisted quota state when building clients
        """
        self.config = config
        self.error_handler = error_handler or ErrorHandler(config.retry)
        self.clients = clients if clients is not None else build_clients(
            config, self.error_handler, cache_manager
        )
        self.metrics = metrics
        self.failed_init: Dict[str, BaseException] = {}
        self.provider_states: Dict[str, ProviderStatus] = {}
        self.stats = _empty_stats()

    @property
    def active_clients(self) -> List[ProviderClient]:
        return [client for client in self.clients if client.name not in self.failed_init]

    async def initialize(self) -> None:
        """
        Initialize every client concurrently.

        Clients that fail are excluded from later submissions.

        Raises:
            SubmitterInitError: If no client could be initialized
        """
        logger.info(f"Initializing {len(self.clients)} search engine clients")
        self.failed_init = {}

        if not self.clients:
            raise SubmitterInitError("No search engine clients are configured")

        results = await asyncio.gather(
            *(
                self.error_handler.with_retry(
                    client.initialize, {"engine": client.name, "operation": "initialize"}
                )
                for client in self.clients
            ),
            return_exceptions=True,
        )

        processed = self.error_handler.process_batch_results(results, self.clients)
        for failure in processed["failed"]:
            client, error = failure["item"], failure["error"]
            logger.error(f"Failed to initialize {client.name} client: {error}")
            self.failed_init[client.name] = error
        logger.info(
            f"Client initialization: {processed['summary']['successful']}/"
            f"{processed['summary']['total']} ready"
        )

        if len(self.failed_init) == len(self.clients):
            raise SubmitterInitError("All search engine clients failed to initialize")
        if self.failed_init:
            logger.warning(
                f"Continuing without: {', '.join(self.failed_init)}; "
                f"using {', '.join(c.name for c in self.active_clients)}"
            )
        logger.info("Search engine submitter initialized")

    async def _submit_with(self, client: ProviderClient, urls: List[str]) -> ProviderResult:
        self.provider_states[client.name] = ProviderStatus.SUBMITTING
        return await self.error_handler.with_retry(
            functools.partial(client.submit_urls, urls),
            {"engine": client.name, "operation": "submit", "urlCount": len(urls)},
        )

    async def submit_urls(self, urls: List[str]) -> AggregateResult:
        """
        Submit URLs to every active provider and aggregate the outcome.

        Args:
            urls: Normalized URLs

        Returns:
            AggregateResult whose ``submitted_urls`` is the union of URLs any
            provider accepted, in input order
        """
        urls = list(urls)
        if not urls:
            logger.warning("No URLs to submit")
            return AggregateResult.empty()

        logger.info(f"Submitting {len(urls)} URLs to search engines")
        active = self.active_clients
        self.provider_states = {client.name: ProviderStatus.PENDING for client in active}

        outcomes = await asyncio.gather(
            *(self._submit_with(client, urls) for client in active),
            return_exceptions=True,
        )

        results: List[ProviderResult] = []
        for client, outcome in zip(active, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"{client.name} submission failed: {outcome}")
                outcome = ProviderResult.failed_result(
                    client.name,
                    urls,
                    str(outcome),
                    kind=classify_error(outcome).value,
                    quota=client.get_quota_info(),
                )
            results.append(outcome)

        for name, error in self.failed_init.items():
            results.append(
                ProviderResult.failed_result(
                    name,
                    urls,
                    f"Client initialization failed: {error}",
                    kind=classify_error(error).value,
                )
            )

        for result in results:
            self.provider_states[result.provider] = result.status

        accepted = set()
        for result in results:
            if result.success:
                accepted.update(result.submitted_urls)

        aggregate = AggregateResult(
            success=any(result.success for result in results),
            total_urls=len(urls),
            submitted_urls=[url for url in urls if url in accepted],
            failed_urls=[url for url in urls if url not in accepted],
            results=results,
        )

        self._update_stats(aggregate)
        self._record_metrics(aggregate)
        self._log_summary(aggregate)
        return aggregate

    def _update_stats(self, aggregate: AggregateResult) -> None:
        self.stats["totalSubmissions"] += 1
        if aggregate.success:
            self.stats["successfulSubmissions"] += 1
        else:
            self.stats["failedSubmissions"] += 1

        engines = self.stats["engines"]
        for result in aggregate.results:
            counters = engines.setdefault(result.provider, _engine_stats())
            counters["submitted"] += len(result.submitted_urls) + len(result.failed_urls)
            counters["successful"] += len(result.submitted_urls)
            counters["failed"] += len(result.failed_urls)

    def _record_metrics(self, aggregate: AggregateResult) -> None:
        if self.metrics is None:
            return
        for result in aggregate.results:
            self.metrics.record_provider_result(result)

    def _log_summary(self, aggregate: AggregateResult) -> None:
        rate = round(len(aggregate.submitted_urls) / aggregate.total_urls * 100)
        summary = (
            f"total={aggregate.total_urls} submitted={len(aggregate.submitted_urls)} "
            f"failed={len(aggregate.failed_urls)} "
            f"engines={aggregate.summary['successfulEngines']}/{aggregate.summary['totalEngines']} "
            f"success_rate={rate}%"
        )
        if aggregate.success:
            logger.info(f"URL submission complete: {summary}")
        else:
            logger.error(f"URL submission failed: {summary}")

        for result in aggregate.results:
            logger.info(
                f"{result.provider}: status={result.status.value} "
                f"submitted={len(result.submitted_urls)} failed={len(result.failed_urls)}"
            )

    async def check_connections(self) -> Dict[str, Any]:
        """
        Check every client's connection concurrently.

        Returns:
            Per-provider ``connected`` flag and status, plus an overall count
        """
        logger.info("Checking search engine connections")
        checks = await asyncio.gather(
            *(client.check_connection() for client in self.clients),
            return_exceptions=True,
        )

        status: Dict[str, Any] = {}
        connected = 0
        for client, result in zip(self.clients, checks):
            ok = result is True
            connected += ok
            status[client.name] = {"connected": ok, "status": client.get_status()}
            logger.info(f"{client.name}: {'connected' if ok else 'not connected'}")

        status["overall"] = {"connectedEngines": connected, "totalEngines": len(self.clients)}
        return status

    def get_provider_states(self) -> Dict[str, str]:
        """Where each provider is in the current (or last) submission cycle."""
        return {name: state.value for name, state in self.provider_states.items()}

    def get_quota_info(self) -> Dict[str, Optional[Dict[str, int]]]:
        info: Dict[str, Optional[Dict[str, int]]] = {provider.value: None for provider in Provider}
        for client in self.clients:
            info[client.name] = client.get_quota_info()
        return info

    def reset_quotas(self) -> None:
        for client in self.clients:
            client.reset_quota()
        logger.info("All search engine quotas reset")

    def get_stats(self) -> Dict[str, Any]:
        """Running submission statistics with an overall success rate."""
        total = self.stats["totalSubmissions"]
        stats = dict(self.stats)
        stats["successRate"] = round(self.stats["successfulSubmissions"] / total * 100) if total else 0
        return stats

    def reset_stats(self) -> None:
        self.stats = _empty_stats()
        logger.info("Submission statistics reset")

    async def close(self) -> None:
        for client in self.clients:
            await client.close()
