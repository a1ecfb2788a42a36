"""Error classification and retry logic for search engine API requests."""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from aiohttp import ClientConnectionError, ClientResponseError

from sitemap_submitter.config import RetryConfig
from sitemap_submitter.errors import ErrorKind, SubmissionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK_ERROR, ErrorKind.SERVER_ERROR, ErrorKind.QUOTA_ERROR}
)


# Exact HTTP statuses; 403 is resolved from the message, other 4xx/5xx by range
_STATUS_KINDS: Dict[int, ErrorKind] = {
    400: ErrorKind.REQUEST_ERROR,
    401: ErrorKind.AUTH_ERROR,
    429: ErrorKind.QUOTA_ERROR,
}

# Checked in order against the lower-cased message
_MESSAGE_PATTERNS: Sequence[Tuple[ErrorKind, Tuple[str, ...]]] = (
    (ErrorKind.NETWORK_ERROR, ("timeout", "timed out", "econnaborted", "network", "connection")),
    (ErrorKind.AUTH_ERROR, ("unauthorized", "authentication", "invalid credentials", "401")),
    (ErrorKind.PERMISSION_ERROR, ("forbidden", "permission", "403")),
    (ErrorKind.QUOTA_ERROR, ("quota", "rate limit", "too many requests", "429")),
    (ErrorKind.SERVER_ERROR, ("500", "502", "503", "504", "server error")),
    (ErrorKind.REQUEST_ERROR, ("400", "bad request", "invalid")),
)

_RECOMMENDATIONS: Dict[ErrorKind, str] = {
    ErrorKind.NETWORK_ERROR: "Check network connectivity and firewall settings",
    ErrorKind.AUTH_ERROR: "Verify API keys and service account credentials",
    ErrorKind.PERMISSION_ERROR: "Check API permissions and site ownership verification",
    ErrorKind.QUOTA_ERROR: "Review quota usage; raise the quota or submit less often",
    ErrorKind.SERVER_ERROR: "The search engine API may be degraded; retry later",
    ErrorKind.REQUEST_ERROR: "Check the request format and parameters",
}


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def _kind_for_status(status: int, message: str) -> Optional[ErrorKind]:
    if status in _STATUS_KINDS:
        return _STATUS_KINDS[status]
    if status == 403:
        if "quota" in message or "rate limit" in message:
            return ErrorKind.QUOTA_ERROR
        return ErrorKind.PERMISSION_ERROR
    if 500 <= status < 600:
        return ErrorKind.SERVER_ERROR
    if 400 <= status < 500:
        return ErrorKind.REQUEST_ERROR
    return None


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an exception onto the error taxonomy.

    Resolution order: an explicit ``kind`` on the error, its HTTP status,
    its exception type, then substring patterns in its message.

    Args:
        error: Exception raised by an operation

    Returns:
        The matching ErrorKind (UNKNOWN_ERROR when nothing matches)
    """
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind

    message = str(getattr(error, "message", None) or error).lower()

    status = _status_of(error)
    if status is not None:
        by_status = _kind_for_status(status, message)
        if by_status is not None:
            return by_status

    if isinstance(error, (asyncio.TimeoutError, ClientConnectionError, ConnectionError)):
        return ErrorKind.NETWORK_ERROR

    for candidate, patterns in _MESSAGE_PATTERNS:
        if any(pattern in message for pattern in patterns):
            return candidate

    return ErrorKind.UNKNOWN_ERROR


def is_retryable_error(error: BaseException) -> bool:
    """Return True if the error belongs to a retryable kind."""
    return classify_error(error) in RETRYABLE_KINDS


def error_from_response(
    provider: str, status: int, detail: str
) -> SubmissionError:
    """
    Build a SubmissionError with a readable message for an HTTP failure.

    Args:
        provider: Provider name used in the message
        status: HTTP status code
        detail: Error message extracted from the response body

    Returns:
        SubmissionError with status and kind populated
    """
    lowered = detail.lower()
    if status == 400:
        text = f"Request error: {detail}"
    elif status == 401:
        text = f"Authentication failed: {detail}"
    elif status == 403:
        if "quota" in lowered:
            text = f"Quota exceeded: {detail}"
        else:
            text = f"Permission denied: {detail}"
    elif status == 429:
        text = f"Rate limited: {detail}"
    elif 500 <= status < 600:
        text = f"{provider} server error ({status}): {detail}"
    else:
        text = f"{provider} API error ({status}): {detail}"

    return SubmissionError(text, status=status, kind=_kind_for_status(status, lowered))


def error_from_exception(error: BaseException) -> SubmissionError:
    """Wrap a transport-level failure (timeout, DNS, refused) as a network error."""
    if isinstance(error, SubmissionError):
        return error
    if isinstance(error, ClientResponseError):
        return SubmissionError(str(error), status=error.status)
    if isinstance(error, asyncio.TimeoutError):
        return SubmissionError("Network error: request timed out", kind=ErrorKind.NETWORK_ERROR)
    return SubmissionError(f"Network error: {error}", kind=ErrorKind.NETWORK_ERROR)


class ErrorHandler:
    """Retries operations with exponential backoff according to the error taxonomy."""

    def __init__(self, retry_config: Optional[RetryConfig] = None):
        """
        Initialize the error handler.

        Args:
            retry_config: Retry policy (defaults to 3 attempts, 1s initial delay, x2)
        """
        self.retry_config = retry_config or RetryConfig()

    def delay_for_attempt(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay_ms = self.retry_config.initial_delay_ms * (
            self.retry_config.backoff_multiplier ** (attempt - 1)
        )
        return delay_ms / 1000.0

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Run an async operation, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine factory
            context: Extra fields included in log messages

        Returns:
            The operation's result

        Raises:
            Exception: The last error, once it is non-retryable or attempts run out
        """
        context = context or {}
        max_attempts = self.retry_config.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                logger.debug(f"Running operation (attempt {attempt}/{max_attempts}) {context}")
                return await operation()
            except Exception as e:
                kind = classify_error(e)
                logger.warning(
                    f"Operation failed (attempt {attempt}/{max_attempts}): {e} "
                    f"[{kind.value}] {context}"
                )

                if kind not in RETRYABLE_KINDS:
                    logger.error(f"Non-retryable error, giving up: {e}")
                    raise

                if attempt >= max_attempts:
                    logger.error(f"All {max_attempts} attempts failed: {e}")
                    raise

                delay = self.delay_for_attempt(attempt)
                logger.info(f"Retrying in {delay:.2f}s")
                await asyncio.sleep(delay)

        raise RuntimeError("with_retry called with max_attempts < 1")

    def process_batch_results(
        self, results: Sequence[Any], original_items: Sequence[Any]
    ) -> Dict[str, Any]:
        """
        Split ``asyncio.gather(..., return_exceptions=True)`` output by outcome.

        Args:
            results: Values or exceptions, aligned with ``original_items``
            original_items: The inputs each result belongs to

        Returns:
            Dict with successful, failed, errors and a summary with success rate
        """
        processed: Dict[str, Any] = {
            "successful": [],
            "failed": [],
            "errors": [],
        }

        for item, result in zip(original_items, results):
            if isinstance(result, BaseException):
                processed["failed"].append({"item": item, "error": result})
                processed["errors"].append({
                    "item": item,
                    "errorType": classify_error(result).value,
                    "message": str(result),
                })
            else:
                processed["successful"].append({"item": item, "result": result})

        total = len(original_items)
        successful = len(processed["successful"])
        processed["summary"] = {
            "total": total,
            "successful": successful,
            "failed": len(processed["failed"]),
            "successRate": round(successful / total * 100) if total else 0,
        }
        return processed

    def log_error_statistics(self, errors: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        """
        Log a breakdown of errors by type.

        Args:
            errors: Error dicts with an ``errorType`` or ``kind`` key

        Returns:
            Count per error type
        """
        counts = Counter(
            error.get("errorType") or error.get("kind") or ErrorKind.UNKNOWN_ERROR.value
            for error in errors
        )
        if not counts:
            return {}

        logger.warning(f"Error statistics: {dict(counts)}")
        top = counts.most_common(3)
        logger.warning(f"Most common error types: {top}")
        return dict(counts)

    def generate_error_report(self, results: Iterable[Any]) -> Dict[str, Any]:
        """
        Summarize provider results into an error report with recommendations.

        Args:
            results: ProviderResult objects

        Returns:
            Report dict with summary, errorBreakdown and recommendations
        """
        breakdown: Counter = Counter()
        total = successful = 0

        for result in results:
            total += 1
            if result.success:
                successful += 1
            for error in result.errors:
                breakdown[error.kind] += 1

        recommendations: List[str] = []
        for kind_name in breakdown:
            try:
                recommendation = _RECOMMENDATIONS.get(ErrorKind(kind_name))
            except ValueError:
                recommendation = None
            if recommendation and recommendation not in recommendations:
                recommendations.append(recommendation)

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "summary": {
                "totalOperations": total,
                "successfulOperations": successful,
                "failedOperations": total - successful,
                "successRate": round(successful / total * 100) if total else 0,
            },
            "errorBreakdown": dict(breakdown),
            "recommendations": recommendations,
        }
