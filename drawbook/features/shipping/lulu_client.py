"""Lulu Print API client.

OAuth2 client-credentials token, then one print-job cost calculation per
shipping level. Levels the provider rejects for an address are skipped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from drawbook.core.config import settings, lulu_base_url
from drawbook.core.errors import ShippingProviderError, ValidationError
from drawbook.models.order import OrderType, ShippingInfo, ShippingLevel

logger = logging.getLogger("drawbook")

TOKEN_PATH = "/auth/realms/glasstree/protocol/openid-connect/token"
COST_CALCULATION_PATH = "/print-job-cost-calculations/"

PRODUCT_CODES = {
    OrderType.SOFTCOVER: "0850X0850FCPRESS060UW444MXX",
    OrderType.HARDCOVER: "0850X0850FCPRECW060UW444MXX",
}

LEVEL_LABELS = {
    ShippingLevel.MAIL: "Standard Mail",
    ShippingLevel.GROUND: "Ground",
    ShippingLevel.EXPEDITED: "Expedited",
    ShippingLevel.EXPRESS: "Express",
}

DELIVERY_ESTIMATES = {
    ShippingLevel.MAIL: "7-14 business days",
    ShippingLevel.GROUND: "5-7 business days",
    ShippingLevel.EXPEDITED: "3-5 business days",
    ShippingLevel.EXPRESS: "1-3 business days",
}


@dataclass
class LevelQuote:
    level: ShippingLevel
    cost: float  # provider currency units, not cents
    currency: str


def _address_payload(address: ShippingInfo) -> dict:
    return {
        "name": address.name,
        "street1": address.address1,
        "street2": address.address2 or "",
        "city": address.city,
        "state_code": address.state,
        "postcode": address.zip,
        "country_code": address.country or "US",
        "phone_number": address.phone or "0000000000",
        "email": address.email or "noreply@example.com",
    }


def _shipping_cost(data: dict) -> float:
    shipping = data.get("shipping_cost") or {}
    raw = (
        shipping.get("total_cost_excl_tax")
        or shipping.get("cost_excl_tax")
        or data.get("total_shipping_cost")
        or "0"
    )
    cost = float(raw)
    if cost < 0 or cost != cost:
        raise ValueError(f"invalid shipping cost {raw!r}")
    return cost


class LuluClient:
    def __init__(
        self,
        client_key: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_key = client_key or settings.LULU_API_KEY
        self.client_secret = client_secret or settings.LULU_API_SECRET
        self.base_url = (base_url or lulu_base_url()).rstrip("/")
        self.timeout = timeout or settings.LULU_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def get_access_token(self, client: httpx.AsyncClient) -> str:
        if not self.client_key or not self.client_secret:
            raise ShippingProviderError("Shipping provider is not configured")
        response = await client.post(
            TOKEN_PATH,
            auth=(self.client_key, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            logger.error("lulu.token_failed", extra={"status": response.status_code})
            raise ShippingProviderError("Could not reach the shipping provider. Please try again.")
        try:
            token = response.json()["access_token"]
        except (ValueError, KeyError, TypeError):
            token = None
        if not isinstance(token, str) or not token:
            logger.error("lulu.token_unreadable", extra={"status": response.status_code})
            raise ShippingProviderError("Could not reach the shipping provider. Please try again.")
        return token

    async def get_shipping_rates(
        self,
        book_type: OrderType,
        quantity: int,
        address: ShippingInfo,
    ) -> List[LevelQuote]:
        product_code = PRODUCT_CODES.get(book_type)
        if product_code is None:
            raise ValidationError(f"{book_type.value} orders are not printed")

        quotes: List[LevelQuote] = []
        try:
            async with self._client() as client:
                token = await self.get_access_token(client)
                headers = {"Authorization": f"Bearer {token}", "Cache-Control": "no-cache"}
                for level in ShippingLevel:
                    body = {
                        "line_items": [
                            {
                                "page_count": settings.BOOK_PAGE_COUNT,
                                "pod_package_id": product_code,
                                "quantity": quantity,
                            }
                        ],
                        "shipping_address": _address_payload(address),
                        "shipping_level": level.value,
                    }
                    response = await client.post(COST_CALCULATION_PATH, json=body, headers=headers)
                    if response.status_code >= 400:
                        # Level not offered for this address
                        logger.warning(
                            "lulu.level_unavailable",
                            extra={"status": response.status_code, "event_type": level.value},
                        )
                        continue
                    try:
                        data = response.json()
                        cost = _shipping_cost(data)
                        currency = data.get("currency") or "USD"
                    except (ValueError, KeyError, TypeError, AttributeError):
                        logger.warning("lulu.cost_unreadable", extra={"event_type": level.value})
                        continue
                    quotes.append(LevelQuote(level=level, cost=cost, currency=currency))
        except httpx.HTTPError as e:
            logger.error("lulu.transport_error", extra={"error_code": type(e).__name__})
            raise ShippingProviderError("Could not reach the shipping provider. Please try again.")
        return quotes
