"""JSON file cache for sitemap snapshots, submission history and quota state."""

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sitemap_submitter.config import Config
from sitemap_submitter.models import AggregateResult, Provider, QuotaState, SitemapSnapshot

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _engine_counters() -> Dict[str, int]:
    return {"totalSubmissions": 0, "successfulSubmissions": 0, "failedSubmissions": 0}


def default_submission_log() -> Dict[str, Any]:
    """Empty submission log structure."""
    return {
        "version": CACHE_VERSION,
        "createdAt": _now_iso(),
        "submissions": [],
        "statistics": {
            "totalSubmissions": 0,
            "successfulSubmissions": 0,
            "failedSubmissions": 0,
            "lastSubmission": None,
            "engines": {provider.value: _engine_counters() for provider in Provider},
        },
    }


def _is_valid_sitemap_cache(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("urls"), list)
        and isinstance(data.get("hash"), str)
        and isinstance(data.get("lastFetched"), str)
    )


def _is_valid_submission_log(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("submissions"), list)
        and isinstance(data.get("statistics"), dict)
        and isinstance(data["statistics"].get("totalSubmissions"), int)
    )


class CacheManager:
    """
    Persists pipeline state as JSON files in the cache directory.

    Files are rewritten whole through a temporary file and ``os.replace``, so
    a crash mid-write leaves the previous version intact.
    """

    def __init__(self, config: Config):
        """
        Initialize the cache manager.

        Args:
            config: Application configuration
        """
        self.config = config
        self.cache_dir = config.cache.directory
        self.sitemap_cache_file = config.cache_path(config.cache.sitemap_cache_file)
        self.submission_log_file = config.cache_path(config.cache.submission_log_file)
        self.quota_state_file = config.cache_path(config.cache.quota_state_file)
        self.max_history = config.cache.max_history

    def initialize(self) -> None:
        """
        Create the cache directory.

        Raises:
            OSError: If the directory cannot be created
        """
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create cache directory {self.cache_dir}: {e}")
            raise
        logger.debug(f"Cache directory ready: {self.cache_dir}")

    def _read_json(self, path: str) -> Optional[Any]:
        """Read a JSON file, returning None when it does not exist."""
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_json(self, path: str, data: Any) -> None:
        """Atomically replace ``path`` with the JSON encoding of ``data``."""
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get_cached_sitemap(self) -> Optional[SitemapSnapshot]:
        """
        Load the previously saved sitemap snapshot.

        Returns:
            The snapshot, or None if missing, unreadable or malformed
        """
        try:
            data = self._read_json(self.sitemap_cache_file)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read sitemap cache: {e}")
            return None

        if data is None:
            return None

        if not _is_valid_sitemap_cache(data):
            logger.warning("Sitemap cache has an invalid format, ignoring it")
            return None

        try:
            snapshot = SitemapSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Sitemap cache entries are malformed, ignoring it: {e}")
            return None

        logger.debug(f"Loaded sitemap cache with {len(snapshot.urls)} URLs")
        return snapshot

    def get_cached_sitemap_metadata(self) -> Optional[Dict[str, Any]]:
        """Raw cache document (including ``cachedAt``) or None."""
        try:
            data = self._read_json(self.sitemap_cache_file)
        except (OSError, ValueError):
            return None
        return data if _is_valid_sitemap_cache(data) else None

    def save_sitemap_cache(self, snapshot: SitemapSnapshot) -> None:
        """
        Overwrite the sitemap cache with a new snapshot.

        Args:
            snapshot: Snapshot to persist

        Raises:
            OSError: If the file cannot be written
        """
        data = snapshot.to_dict()
        data["cachedAt"] = _now_iso()
        data["version"] = CACHE_VERSION

        try:
            self._write_json(self.sitemap_cache_file, data)
        except OSError as e:
            logger.error(f"Failed to save sitemap cache: {e}")
            raise
        logger.debug(f"Saved sitemap cache with {len(snapshot.urls)} URLs")

    def get_submission_log(self) -> Dict[str, Any]:
        """
        Load the submission log.

        Returns:
            The log, or a fresh default structure if missing or malformed
        """
        try:
            data = self._read_json(self.submission_log_file)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read submission log, using defaults: {e}")
            return default_submission_log()

        if data is not None and _is_valid_submission_log(data):
            return data
        if data is not None:
            logger.warning("Submission log has an invalid format, starting a new one")
        return default_submission_log()

    def save_submission_log(self, log: Dict[str, Any]) -> None:
        """
        Persist the submission log.

        Args:
            log: Log document

        Raises:
            OSError: If the file cannot be written
        """
        updated = dict(log)
        updated["lastUpdated"] = _now_iso()
        updated["version"] = CACHE_VERSION
        self._write_json(self.submission_log_file, updated)
        logger.debug("Saved submission log")

    def record_submission(self, result: AggregateResult) -> None:
        """
        Append a submission cycle to the history and update statistics.

        Failures are logged and never raised; history is best-effort.

        Args:
            result: Aggregate result of the cycle
        """
        try:
            log = self.get_submission_log()
            record = result.to_dict()

            log["submissions"].insert(0, record)
            del log["submissions"][self.max_history:]

            self._update_statistics(log["statistics"], record)
            self.save_submission_log(log)
            logger.debug("Recorded submission result")
        except Exception as e:
            logger.error(f"Failed to record submission result: {e}")

    @staticmethod
    def _update_statistics(stats: Dict[str, Any], record: Dict[str, Any]) -> None:
        stats["totalSubmissions"] = stats.get("totalSubmissions", 0) + 1
        stats["lastSubmission"] = _now_iso()

        outcome = "successfulSubmissions" if record["success"] else "failedSubmissions"
        stats[outcome] = stats.get(outcome, 0) + 1

        engines = stats.setdefault("engines", {})
        for result in record.get("results", []):
            counters = engines.get(result.get("engine"))
            if not isinstance(counters, dict):
                continue
            outcome = "successfulSubmissions" if result.get("success") else "failedSubmissions"
            for key in ("totalSubmissions", outcome):
                counters[key] = counters.get(key, 0) + 1

    def get_cache_stats(self) -> Optional[Dict[str, Any]]:
        """
        Summarize the cache contents.

        Returns:
            Dict with ``sitemap`` and ``submissions`` sections, or None on error
        """
        try:
            sitemap = self.get_cached_sitemap_metadata()
            stats = self.get_submission_log()["statistics"]

            return {
                "sitemap": {
                    "exists": sitemap is not None,
                    "urlCount": len(sitemap["urls"]) if sitemap else 0,
                    "lastFetched": sitemap.get("lastFetched") if sitemap else None,
                    "cachedAt": sitemap.get("cachedAt") if sitemap else None,
                },
                "submissions": {
                    "totalSubmissions": stats.get("totalSubmissions", 0),
                    "successfulSubmissions": stats.get("successfulSubmissions", 0),
                    "failedSubmissions": stats.get("failedSubmissions", 0),
                    "lastSubmission": stats.get("lastSubmission"),
                },
            }
        except Exception as e:
            logger.error(f"Failed to collect cache statistics: {e}")
            return None

    def cleanup_expired_cache(self, max_age_hours: float = 24) -> bool:
        """
        Delete the sitemap cache if it is older than ``max_age_hours``.

        Args:
            max_age_hours: Maximum cache age in hours

        Returns:
            True if the cache was removed
        """
        sitemap = self.get_cached_sitemap_metadata()
        cached_at = sitemap.get("cachedAt") if sitemap else None
        if not cached_at:
            return False

        try:
            cached_time = datetime.fromisoformat(cached_at)
        except ValueError:
            logger.warning(f"Unparseable cachedAt value in sitemap cache: {cached_at}")
            return False
        if cached_time.tzinfo is None:
            cached_time = cached_time.replace(tzinfo=timezone.utc)

        age = datetime.now(timezone.utc) - cached_time
        if age <= timedelta(hours=max_age_hours):
            return False

        logger.info(f"Removing expired sitemap cache ({age.total_seconds() / 3600:.0f} hours old)")
        try:
            self.clear_sitemap_cache()
        except OSError as e:
            logger.warning(f"Failed to remove expired sitemap cache: {e}")
            return False
        return True

    def clear_sitemap_cache(self) -> None:
        """
        Delete the sitemap cache file; a missing file is not an error.

        Raises:
            OSError: If the file exists but cannot be removed
        """
        try:
            os.remove(self.sitemap_cache_file)
        except FileNotFoundError:
            return
        logger.info("Cleared sitemap cache")

    def load_quota_state(self, provider: str, limit: int) -> QuotaState:
        """
        Load persisted quota usage for a provider.

        Usage recorded on a previous UTC day is discarded.

        Args:
            provider: Provider name
            limit: Current configured quota limit

        Returns:
            QuotaState for today (zero usage when nothing is stored)
        """
        try:
            data = self._read_json(self.quota_state_file) or {}
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read quota state: {e}")
            data = {}

        entry = data.get(provider) if isinstance(data, dict) else None
        today = datetime.now(timezone.utc).date().isoformat()
        if not isinstance(entry, dict) or entry.get("date") != today:
            return QuotaState(used=0, limit=limit)

        used = entry.get("used", 0)
        return QuotaState(used=used if isinstance(used, int) else 0, limit=limit)

    def save_quota_state(self, provider: str, quota: QuotaState) -> None:
        """
        Persist a provider's quota usage for today. Failures are logged.

        Args:
            provider: Provider name
            quota: Current quota state
        """
        try:
            data = self._read_json(self.quota_state_file) or {}
            if not isinstance(data, dict):
                data = {}
            data[provider] = {
                "date": datetime.now(timezone.utc).date().isoformat(),
                "used": quota.used,
                "limit": quota.limit,
            }
            self._write_json(self.quota_state_file, data)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to save quota state for {provider}: {e}")
