"""
Deposit Offer API Client

Looks up booked deposit offers so deposit documents without a contract
number can be matched to an offer by deposit date.

Usage:
    api = OfferApi(base_url)
    match = await api.match_offer_by_date("102206", date(2023, 5, 1))
    if match.can_auto_match:
        contract_number = match.offers[0].contract_number
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dossier_migration.clients.http_retry import request_with_retries
from dossier_migration.core.exceptions import OfferApiError

logger = logging.getLogger(__name__)

BOOKED_STATUS = "Booked"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Offer(_CamelModel):
    """A deposit offer."""

    offer_id: str = ""
    core_id: str = ""
    contract_number: str = ""
    """Contract number; part of the deposit dossier id"""

    amount: float = 0.0
    currency: str = ""
    deposit_date: Optional[datetime] = None
    status: str = ""
    """Only Booked offers are migrated"""

    batch: Optional[str] = None
    product_type: str = ""
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class OfferDetails(Offer):
    """Offer with deposit terms."""

    interest_rate: Optional[float] = None
    maturity_date: Optional[datetime] = None
    duration: Optional[int] = None
    notes: Optional[str] = None
    document_ids: List[str] = []


class OfferDocument(_CamelModel):
    """A document attached to an offer."""

    document_id: str = ""
    document_type: str = ""
    document_type_code: str = ""
    alfresco_node_id: str = ""
    created_at: Optional[datetime] = None
    is_signed: bool = False
    version: Optional[str] = None
    category_code: Optional[str] = None
    category_name: Optional[str] = None
    status: str = "Active"


@dataclass
class OfferMatchResult:
    """Offers found for a client on one deposit date."""

    core_id: str
    deposit_date: date
    offers: List[Offer] = field(default_factory=list)

    @property
    def can_auto_match(self) -> bool:
        return len(self.offers) == 1

    @property
    def is_ambiguous(self) -> bool:
        """More than one offer on the date; needs manual matching."""
        return len(self.offers) > 1


class OfferApi:
    """Deposit offer API over httpx."""

    OFFERS = "/api/offers"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        retry_count: int = 3,
        retry_backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the offer API.

        Args:
            base_url: API base URL
            timeout: Per-request timeout in seconds
            retry_count: Retries for transient failures
            retry_backoff_seconds: Base delay between retries
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_backoff_seconds = retry_backoff_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_json(self, url: str, operation: str, **kwargs):
        response = await request_with_retries(
            self._client,
            "GET",
            url,
            operation=operation,
            timeout=self.timeout,
            retry_count=self.retry_count,
            backoff_seconds=self.retry_backoff_seconds,
            timeout_error=lambda op, t: OfferApiError(f"{op} timed out after {t}s"),
            retry_error=lambda op, n: OfferApiError(f"{op} failed after {n} retries"),
            **kwargs,
        )
        if not response.is_success:
            logger.error(f"{operation} failed with status {response.status_code}")
            raise OfferApiError(
                f"{operation} failed with status {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return response.json()

    async def get_booked_offers(self, core_id: str) -> List[Offer]:
        """
        Get booked offers of a client.

        Args:
            core_id: Client core id

        Returns:
            Offers with status Booked
        """
        if not core_id:
            raise ValueError("core_id cannot be empty")

        payload = await self._get_json(
            self.OFFERS, "get_booked_offers", params={"coreId": core_id, "status": BOOKED_STATUS}
        )
        offers = [Offer.model_validate(item) for item in payload or []]
        booked = [offer for offer in offers if offer.status.lower() == BOOKED_STATUS.lower()]
        logger.info(f"Retrieved {len(booked)} booked offers for {core_id}")
        return booked

    async def get_offer_details(self, offer_id: str) -> OfferDetails:
        if not offer_id:
            raise ValueError("offer_id cannot be empty")
        payload = await self._get_json(f"{self.OFFERS}/{offer_id}", "get_offer_details")
        if not payload:
            raise OfferApiError(f"Offer API returned no details for {offer_id}")
        return OfferDetails.model_validate(payload)

    async def get_offer_documents(self, offer_id: str) -> List[OfferDocument]:
        if not offer_id:
            raise ValueError("offer_id cannot be empty")
        payload = await self._get_json(f"{self.OFFERS}/{offer_id}/documents", "get_offer_documents")
        return [OfferDocument.model_validate(item) for item in payload or []]

    async def find_offers_by_date(self, core_id: str, deposit_date: Union[date, datetime]) -> List[Offer]:
        """
        Find booked offers of a client made on a deposit date.

        Args:
            core_id: Client core id
            deposit_date: Deposit date

        Returns:
            Matching offers (possibly several)
        """
        if not core_id:
            raise ValueError("core_id cannot be empty")

        payload = await self._get_json(
            self.OFFERS,
            "find_offers_by_date",
            params={
                "coreId": core_id,
                "depositDate": deposit_date.strftime("%Y-%m-%d"),
                "status": BOOKED_STATUS,
            },
        )
        offers = [Offer.model_validate(item) for item in payload or []]
        if not offers:
            logger.warning(f"No offers found for {core_id} on {deposit_date:%Y-%m-%d}")
        return offers

    async def is_offer_booked(self, offer_id: str) -> bool:
        details = await self.get_offer_details(offer_id)
        return details.status.lower() == BOOKED_STATUS.lower()

    async def match_offer_by_date(self, core_id: str, deposit_date: Union[date, datetime]) -> OfferMatchResult:
        """
        Match a deposit date to the client's offers.

        Ambiguous matches are reported, never resolved automatically.

        Args:
            core_id: Client core id
            deposit_date: Deposit date

        Returns:
            OfferMatchResult
        """
        offers = await self.find_offers_by_date(core_id, deposit_date)
        day = deposit_date.date() if isinstance(deposit_date, datetime) else deposit_date
        result = OfferMatchResult(core_id=core_id, deposit_date=day, offers=offers)
        if result.is_ambiguous:
            contracts = ", ".join(offer.contract_number for offer in offers)
            logger.warning(
                f"Multiple offers ({len(offers)}) for {core_id} on {day:%Y-%m-%d}, manual matching required: {contracts}"
            )
        return result
