"""
Configuration for cachecount.
"""
import logging
import os
from dataclasses import dataclass
from datetime import tzinfo
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DATASET = "metricsDataset"


class ConfigurationError(RuntimeError):
    """Raised when store credentials or settings are missing or invalid."""
    pass


@dataclass
class AnalyticsConfig:
    """Configuration for a collector / query API instance.

    Usage:
        config = AnalyticsConfig.from_env()
        app = create_app(config)
    """

    # Store credentials (required for queries)
    cf_account_id: str | None = None
    cf_bearer_token: str | None = None
    dataset: str = DEFAULT_DATASET

    # Write side: ingest endpoint that forwards data points to the dataset.
    # Without it data points are only logged.
    write_url: str | None = None
    write_token: str | None = None

    # Reference timezone for the "new visitor" calendar-day boundary
    timezone: str = "UTC"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._tz = self._load_timezone(self.timezone)
        if not self.has_store_credentials:
            logger.warning(
                "Analytics store credentials are not configured; "
                "queries will fail until CF_ACCOUNT_ID and CF_BEARER_TOKEN are set"
            )

    @staticmethod
    def _load_timezone(name: str) -> tzinfo:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone: {name!r}") from None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AnalyticsConfig":
        """Build configuration from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            cf_account_id=env.get("CF_ACCOUNT_ID") or None,
            cf_bearer_token=env.get("CF_BEARER_TOKEN") or None,
            dataset=env.get("CACHECOUNT_DATASET") or DEFAULT_DATASET,
            write_url=env.get("CACHECOUNT_WRITE_URL") or None,
            write_token=env.get("CACHECOUNT_WRITE_TOKEN") or None,
            timezone=env.get("CACHECOUNT_TIMEZONE") or "UTC",
        )

    @property
    def tz(self) -> tzinfo:
        """Reference timezone as a tzinfo."""
        return self._tz

    @property
    def has_store_credentials(self) -> bool:
        return bool(self.cf_account_id and self.cf_bearer_token)
