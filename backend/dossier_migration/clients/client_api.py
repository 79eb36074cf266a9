"""
Client Data API Client

Looks up client master data (name, type, segment, residency, ...) by core id
and the client's active accounts. Used to enrich folders and documents.

Usage:
    api = ClientApi(base_url)
    data = await api.get_client_data("102206")
    accounts = await api.get_active_accounts("102206", date(2024, 1, 31))
"""

import asyncio
import logging
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field

from dossier_migration.clients.http_retry import request_with_retries
from dossier_migration.core.exceptions import (
    ClientApiError,
    ClientApiRetryExhaustedError,
    ClientApiTimeoutError,
)

logger = logging.getLogger(__name__)


class ClientData(BaseModel):
    """Client master data returned by the extended client detail endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    core_id: str = Field(default="", alias="coreId")
    """Client id in the core banking system"""

    mbr_jmbg: str = Field(default="", alias="mbrJmbg")
    """Registration number (legal entities) or personal id (natural persons)"""

    client_name: str = Field(default="", alias="clientName")
    client_type: str = Field(default="", alias="clientType")
    """FL (natural person) or PL (legal entity)"""

    client_subtype: str = Field(default="", alias="clientSubtype")
    residency: str = Field(default="", alias="residency")
    segment: str = Field(default="", alias="segment")
    staff: Optional[str] = Field(default=None, alias="staff")
    opu_user: Optional[str] = Field(default=None, alias="opuUser")
    opu_realization: Optional[str] = Field(default=None, alias="opuRealization")
    barclex: Optional[str] = Field(default=None, alias="barclex")
    collaborator: Optional[str] = Field(default=None, alias="collaborator")

    has_error: bool = False
    """True when the API answered but had no data for the client"""

    error_message: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.client_name and not self.client_type and not self.segment


class ClientApi:
    """
    Client data API over httpx.

    Client lookups are cached for `cache_ttl_seconds` and at most
    `max_concurrent_requests` calls are in flight at once.
    """

    CLIENT_DETAIL_EXTENDED = "/api/Client/GetClientDetailExtended"
    CLIENT_DETAIL = "/api/Client/GetClientDetail"
    CLIENT_BASE = "/api/Client"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        retry_count: int = 3,
        max_concurrent_requests: int = 10,
        cache_ttl_seconds: int = 3600,
        retry_backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client API.

        Args:
            base_url: API base URL
            timeout: Per-request timeout in seconds
            retry_count: Retries for transient failures
            max_concurrent_requests: Concurrent request limit
            cache_ttl_seconds: How long lookups stay cached
            retry_backoff_seconds: Base delay between retries
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_backoff_seconds = retry_backoff_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent_requests)
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _cache_get(self, key: str) -> Optional[Any]:
        cached = self._cache.get(key)
        if cached is None:
            return None
        expires_at, value = cached
        if expires_at < time.monotonic():
            del self._cache[key]
            return None
        return value

    def _cache_set(self, key: str, value: Any) -> None:
        self._cache[key] = (time.monotonic() + self.cache_ttl_seconds, value)

    async def _get(self, url: str, operation: str, **kwargs) -> httpx.Response:
        return await request_with_retries(
            self._client,
            "GET",
            url,
            operation=operation,
            timeout=self.timeout,
            retry_count=self.retry_count,
            backoff_seconds=self.retry_backoff_seconds,
            timeout_error=ClientApiTimeoutError,
            retry_error=ClientApiRetryExhaustedError,
            **kwargs,
        )

    async def get_client_data(self, core_id: str) -> ClientData:
        """
        Get client master data.

        Args:
            core_id: Client core id

        Returns:
            ClientData; empty data for a blank id, `has_error` set when the client is unknown

        Raises:
            ClientApiTimeoutError: If the API timed out
            ClientApiRetryExhaustedError: If every attempt failed
            ClientApiError: On any other error response
        """
        if not core_id or not core_id.strip():
            logger.warning("get_client_data called with empty core id, returning empty ClientData")
            return ClientData()

        cache_key = f"client_data_{core_id}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        async with self._semaphore:
            # Another task may have fetched it while we waited
            cached = self._cache_get(cache_key)
            if cached is not None:
                return cached

            response = await self._get(f"{self.CLIENT_DETAIL_EXTENDED}/{core_id}", "get_client_data")
            if response.status_code == 404:
                logger.warning(f"Client {core_id} not found in client API")
                data = ClientData(core_id=core_id, has_error=True, error_message=response.text[:500])
            elif not response.is_success:
                raise ClientApiError(
                    f"Client lookup for {core_id} failed with status {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                )
            else:
                payload = response.json() or {}
                data = ClientData.model_validate(payload)
                if not data.core_id:
                    data.core_id = core_id
                logger.info(f"Retrieved client data for {core_id}: {data.client_name} ({data.client_type})")

            self._cache_set(cache_key, data)
            return data

    async def get_active_accounts(self, core_id: str, as_of: Union[date, datetime]) -> List[str]:
        """
        Get account numbers active for a client on a date.

        Args:
            core_id: Client core id
            as_of: Reference date

        Returns:
            Account numbers (empty for a blank id)
        """
        if not core_id or not core_id.strip():
            return []

        response = await self._get(
            f"{self.CLIENT_BASE}/{core_id}/accounts",
            "get_active_accounts",
            params={"asOfDate": as_of.strftime("%Y-%m-%d"), "status": "active"},
        )
        if response.status_code == 404:
            return []
        if not response.is_success:
            raise ClientApiError(
                f"Account lookup for {core_id} failed with status {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )
        accounts = response.json() or []
        logger.debug(f"Client {core_id} has {len(accounts)} active accounts as of {as_of:%Y-%m-%d}")
        return [str(account) for account in accounts]

    async def validate_client_exists(self, core_id: str) -> bool:
        """Check that the client API knows the core id. Results are cached."""
        if not core_id or not core_id.strip():
            return False

        cache_key = f"client_exists_{core_id}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        async with self._semaphore:
            response = await self._get(f"{self.CLIENT_DETAIL}/{core_id}", "validate_client_exists")
            exists = response.is_success
            self._cache_set(cache_key, exists)
            logger.debug(f"Client {core_id} exists: {exists}")
            return exists
