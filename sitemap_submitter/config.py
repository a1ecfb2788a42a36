"""Configuration handling for the Sitemap Submitter."""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

GOOGLE_KEY_ENV = "GOOGLE_SERVICE_ACCOUNT_KEY"
BING_KEY_ENV = "BING_API_KEY"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class SitemapConfig:
    """Where the sitemap lives and how to fetch it."""

    url: str = ""
    timeout_sec: float = 30.0
    user_agent: str = "SitemapSubmitter/1.0"

    @property
    def site_url(self) -> Optional[str]:
        """Scheme and host of the sitemap, e.g. ``https://example.com``."""
        parsed = urlparse(self.url)
        if not parsed.scheme or not parsed.hostname:
            return None
        return f"{parsed.scheme}://{parsed.hostname}"

    @property
    def hostname(self) -> Optional[str]:
        return urlparse(self.url).hostname or None


@dataclass
class GoogleConfig:
    """Google Indexing API settings."""

    enabled: bool = True
    quota_limit: int = 200
    endpoint: str = "https://indexing.googleapis.com/v3/urlNotifications:publish"
    scopes: List[str] = field(
        default_factory=lambda: ["https://www.googleapis.com/auth/indexing"]
    )
    request_delay_sec: float = 0.1
    timeout_sec: float = 30.0


@dataclass
class BingConfig:
    """Bing / IndexNow settings."""

    enabled: bool = True
    quota_limit: int = 10000
    api_url: str = "https://api.indexnow.org/indexnow"
    use_indexnow: bool = True
    key_location: Optional[str] = None
    batch_size: int = 10
    batch_delay_sec: float = 1.0
    timeout_sec: float = 30.0
    connection_timeout_sec: float = 10.0


@dataclass
class RetryConfig:
    """Retry policy applied to provider operations."""

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    backoff_multiplier: float = 2.0


@dataclass
class DetectionConfig:
    """Limits applied when diffing sitemap snapshots."""

    first_run_limit: int = 5
    anomaly_threshold: int = 20
    anomaly_limit: int = 10


@dataclass
class CacheConfig:
    """Local cache locations."""

    directory: str = ".cache"
    sitemap_cache_file: str = "sitemap-cache.json"
    submission_log_file: str = "submission-log.json"
    quota_state_file: str = "quota-state.json"
    max_history: int = 100
    persist_quota: bool = False


@dataclass
class NormalizerConfig:
    """URL normalization options."""

    filter_own_domain: bool = False


@dataclass
class LoggingConfig:
    """Logging output options."""

    level: str = "INFO"
    log_file: Optional[str] = "logs/submitter.log"


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""

    enable_prometheus: bool = False
    textfile_path: Optional[str] = None


_SECTIONS = {
    "sitemap": SitemapConfig,
    "google": GoogleConfig,
    "bing": BingConfig,
    "retry": RetryConfig,
    "detection": DetectionConfig,
    "cache": CacheConfig,
    "normalizer": NormalizerConfig,
    "logging": LoggingConfig,
    "monitoring": MonitoringConfig,
}


def _merge_section(section: Any, values: Dict[str, Any]) -> None:
    """Overlay known keys from a YAML mapping onto a dataclass section."""
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key in known:
            setattr(section, key, value)


@dataclass
class Config:
    """Application configuration combining environment variables and YAML config."""

    # Credentials from environment
    google_service_account_key: str = ""
    bing_api_key: str = ""

    # Client selection flags from environment
    mock_api_calls: bool = False
    disable_google: bool = False
    disable_bing: bool = False

    sitemap: SitemapConfig = field(default_factory=SitemapConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    bing: BingConfig = field(default_factory=BingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_files(cls, config_path: str, env_path: Optional[str] = None) -> "Config":
        """
        Load configuration from a YAML file and environment variables.

        Environment variables provide credentials and client selection flags;
        ``SITEMAP_URL`` overrides the YAML sitemap URL when set.

        Args:
            config_path: Path to YAML configuration file
            env_path: Optional path to .env file (defaults to .env in current directory)

        Returns:
            Config instance with merged configuration
        """
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv()

        config = cls()

        if os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as file:
                yaml_config = yaml.safe_load(file)

            if yaml_config:
                for name, section_cls in _SECTIONS.items():
                    section_values = yaml_config.get(name)
                    if isinstance(section_values, dict):
                        section = section_cls()
                        _merge_section(section, section_values)
                        setattr(config, name, section)

        config.google_service_account_key = os.getenv(GOOGLE_KEY_ENV, "")
        config.bing_api_key = os.getenv(BING_KEY_ENV, "")
        config.mock_api_calls = _env_flag("MOCK_API_CALLS")
        config.disable_google = _env_flag("DISABLE_GOOGLE_API") or not config.google.enabled
        config.disable_bing = _env_flag("DISABLE_BING_API") or not config.bing.enabled

        sitemap_url = os.getenv("SITEMAP_URL")
        if sitemap_url:
            config.sitemap.url = sitemap_url

        return config

    def cache_path(self, filename: str) -> str:
        """Absolute-or-relative path of a file inside the cache directory."""
        return os.path.join(self.cache.directory, filename)

    def missing_credentials(self) -> List[str]:
        """
        List the credential environment variables required but not set.

        Mock mode and disabled providers need no credentials.

        Returns:
            Names of missing environment variables
        """
        if self.mock_api_calls:
            return []

        missing = []
        if not self.disable_google and not self.google_service_account_key:
            missing.append(GOOGLE_KEY_ENV)
        if not self.disable_bing and not self.bing_api_key:
            missing.append(BING_KEY_ENV)
        return missing

    def validate(self) -> List[str]:
        """
        Validate configuration and return a list of validation errors.

        Credentials are reported separately by ``missing_credentials`` since
        test mode tolerates their absence.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.sitemap.url:
            errors.append("Missing sitemap URL (sitemap.url or SITEMAP_URL)")
        elif self.sitemap.site_url is None:
            errors.append(f"Invalid sitemap URL: {self.sitemap.url}")

        if self.disable_google and self.disable_bing:
            errors.append("Both search engines are disabled")

        if self.google.quota_limit < 0:
            errors.append("google.quota_limit must not be negative")
        if self.bing.quota_limit < 0:
            errors.append("bing.quota_limit must not be negative")
        if self.bing.batch_size <= 0:
            errors.append("bing.batch_size must be greater than 0")

        if self.retry.max_attempts <= 0:
            errors.append("retry.max_attempts must be greater than 0")
        if self.retry.initial_delay_ms < 0:
            errors.append("retry.initial_delay_ms must not be negative")
        if self.retry.backoff_multiplier < 1:
            errors.append("retry.backoff_multiplier must be at least 1")

        if self.detection.first_run_limit < 0:
            errors.append("detection.first_run_limit must not be negative")
        if self.detection.anomaly_limit > self.detection.anomaly_threshold:
            errors.append("detection.anomaly_limit must not exceed detection.anomaly_threshold")

        if self.cache.max_history <= 0:
            errors.append("cache.max_history must be greater than 0")

        return errors
