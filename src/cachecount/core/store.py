"""
HTTP access to the analytics dataset.

Reads go through the Cloudflare Analytics Engine SQL API. Writes are single
data points posted to an ingest endpoint (e.g. a Worker holding the dataset
binding). The store itself is append-only: there is no update or delete.
"""
import logging
from typing import Any

import httpx

from ..config import ConfigurationError

logger = logging.getLogger(__name__)

SQL_API_URL = "https://api.cloudflare.com/client/v4/accounts/{account_id}/analytics_engine/sql"

QUERY_TIMEOUT_SECONDS = 30.0
WRITE_TIMEOUT_SECONDS = 1.5


class TransientStoreError(Exception):
    """Raised when the store cannot be reached or answers with an error."""
    pass


class AnalyticsEngineClient:
    """Client for the SQL read API."""

    def __init__(
        self,
        cf_account_id: str | None,
        cf_bearer_token: str | None,
        dataset: str = "metricsDataset",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.account_id = cf_account_id
        self.api_token = cf_bearer_token
        self.dataset = dataset
        self._transport = transport

    @property
    def url(self) -> str:
        return SQL_API_URL.format(account_id=self.account_id)

    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Execute a SQL query and return the ``data`` rows.

        Raises:
            ConfigurationError: Credentials missing or rejected
            TransientStoreError: Network failure, timeout or store error
        """
        missing = [
            name for name, value in (
                ("CF_ACCOUNT_ID", self.account_id),
                ("CF_BEARER_TOKEN", self.api_token),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Analytics store credentials missing: {', '.join(missing)}"
            )

        try:
            async with httpx.AsyncClient(
                timeout=QUERY_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(
                    self.url,
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "text/plain;charset=UTF-8",
                    },
                    content=sql.encode("utf-8"),
                )
        except httpx.HTTPError as e:
            logger.error(f"Analytics store request failed: {e!r}")
            raise TransientStoreError(f"Analytics store unreachable: {e}") from e

        if response.status_code in (401, 403):
            raise ConfigurationError(
                f"Analytics store rejected credentials (HTTP {response.status_code})"
            )
        if response.status_code >= 400:
            logger.error(
                f"Analytics store query failed: HTTP {response.status_code} {response.text[:200]}"
            )
            raise TransientStoreError(
                f"Analytics store query failed: HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransientStoreError("Analytics store returned invalid JSON") from e

        return data.get("data") or []


class DataPointWriter:
    """Base class for data point sinks."""

    async def write(self, data_point: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingDataPointWriter(DataPointWriter):
    """Used when no ingest endpoint is configured."""

    async def write(self, data_point: dict[str, Any]) -> None:
        logger.warning("Can't save data point: analytics store unavailable")
        logger.debug(f"Dropped data point: {data_point}")


class HttpDataPointWriter(DataPointWriter):
    """Posts data points to an ingest endpoint with a short fixed timeout."""

    def __init__(
        self,
        write_url: str,
        write_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.write_url = write_url
        self.write_token = write_token
        self._transport = transport

    async def write(self, data_point: dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.write_token:
            headers["Authorization"] = f"Bearer {self.write_token}"

        try:
            async with httpx.AsyncClient(
                timeout=WRITE_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(self.write_url, headers=headers, json=data_point)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientStoreError(f"Data point write failed: {e}") from e


async def write_data_point(writer: DataPointWriter, data_point: dict[str, Any]) -> bool:
    """Write one data point, logging instead of raising on failure.

    Tracking must never break the page that embeds it, so a dropped point
    is accepted. No retry is attempted.

    Returns:
        True if the writer accepted the point
    """
    try:
        await writer.write(data_point)
    except TransientStoreError as e:
        logger.warning(f"Dropping data point: {e}")
        return False
    return True
