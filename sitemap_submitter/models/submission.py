"""Data models for submission results, quota state and history records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class Provider(str, Enum):
    """Search engines URLs can be submitted to."""

    GOOGLE = "google"
    BING = "bing"


class ProviderStatus(str, Enum):
    """Lifecycle of one provider branch within a submission cycle."""

    PENDING = "pending"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class QuotaState:
    """
    Submission quota owned by a single provider client.

    ``used`` only moves forward within a process; it returns to zero through
    an explicit ``reset()``.
    """

    used: int = 0
    limit: int = 0

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    @property
    def percentage(self) -> int:
        if self.limit <= 0:
            return 100
        return round(self.used / self.limit * 100)

    def consume(self, count: int = 1) -> None:
        self.used += count

    def reset(self) -> None:
        self.used = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class SubmissionErrorEntry:
    """A failure attached to one URL (or a batch member) of a provider result."""

    url: Optional[str]
    message: str
    kind: str = "UNKNOWN_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "message": self.message, "kind": self.kind}


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of one provider's submission cycle."""

    provider: str
    success: bool
    submitted_urls: List[str] = field(default_factory=list)
    failed_urls: List[str] = field(default_factory=list)
    errors: List[SubmissionErrorEntry] = field(default_factory=list)
    quota: Dict[str, int] = field(default_factory=dict)

    @property
    def status(self) -> ProviderStatus:
        if not self.submitted_urls:
            return ProviderStatus.FAILED
        if self.failed_urls:
            return ProviderStatus.PARTIAL
        return ProviderStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.provider,
            "success": self.success,
            "status": self.status.value,
            "submittedUrls": list(self.submitted_urls),
            "failedUrls": list(self.failed_urls),
            "errors": [error.to_dict() for error in self.errors],
            "quota": dict(self.quota),
        }

    @classmethod
    def failed_result(
        cls,
        provider: str,
        urls: Iterable[str],
        message: str,
        kind: str = "UNKNOWN_ERROR",
        quota: Optional[Dict[str, int]] = None,
    ) -> "ProviderResult":
        """Build a result in which every URL failed for the same reason."""
        return cls(
            provider=provider,
            success=False,
            submitted_urls=[],
            failed_urls=list(urls),
            errors=[SubmissionErrorEntry(url=None, message=message, kind=kind)],
            quota=quota or {},
        )


@dataclass(frozen=True)
class AggregateResult:
    """Combined outcome of a submission cycle across every provider."""

    success: bool
    total_urls: int
    submitted_urls: List[str] = field(default_factory=list)
    failed_urls: List[str] = field(default_factory=list)
    results: List[ProviderResult] = field(default_factory=list)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def summary(self) -> Dict[str, int]:
        successful = sum(1 for r in self.results if r.success)
        return {
            "totalEngines": len(self.results),
            "successfulEngines": successful,
            "failedEngines": len(self.results) - successful,
        }

    def result_for(self, provider: str) -> Optional[ProviderResult]:
        for result in self.results:
            if result.provider == provider:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        """History record form of this result."""
        return {
            "timestamp": self.timestamp,
            "success": self.success,
            "totalUrls": self.total_urls,
            "submittedUrls": list(self.submitted_urls),
            "failedUrls": list(self.failed_urls),
            "results": [result.to_dict() for result in self.results],
            "summary": self.summary,
        }

    @classmethod
    def empty(cls) -> "AggregateResult":
        return cls(success=True, total_urls=0)
