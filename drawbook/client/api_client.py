"""
Async HTTP client for the Drawbook API.

Used by the checkout wizard and the fulfillment poller outside the server.
Error envelopes are turned back into the matching AppError subclass so
callers handle remote and local failures the same way.

Reads accept an optional `abort` event. When it is set before the response
arrives the request is dropped and the call returns None.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from drawbook.core.errors import (
    AppError,
    AuthenticationError,
    EntitlementError,
    ForbiddenError,
    NotFoundError,
    PaymentProviderError,
    ProviderError,
    ShippingProviderError,
    ValidationError,
)
from drawbook.models.creation import Creation, CreationDetail
from drawbook.models.credits import CanCreateResult, CreditBalance
from drawbook.models.order import (
    BookCheckoutRequest,
    BookPrice,
    CheckoutSession,
    OrderStatusView,
    OrderType,
    ShippingInfo,
    ShippingOption,
)

_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        ValidationError,
        NotFoundError,
        AuthenticationError,
        ForbiddenError,
        EntitlementError,
        ProviderError,
        ShippingProviderError,
        PaymentProviderError,
    )
}


def error_from_response(response: httpx.Response) -> AppError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        error = {}
    code = error.get("code") or "http_error"
    message = error.get("message") or (body.get("detail") if isinstance(body, dict) else None) or response.reason_phrase
    if not isinstance(message, str):
        message = str(message)
    cls = _ERRORS_BY_CODE.get(code)
    if cls is None:
        return AppError(message, code=code, status_code=response.status_code, request_id=error.get("request_id"))
    return cls(message, request_id=error.get("request_id"))


class DrawbookClient:
    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        elif user_id:
            headers["X-User-Id"] = user_id
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "DrawbookClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._http.request(method, path, **kwargs)
        if response.status_code >= 400:
            raise error_from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _abortable(self, abort: Optional[asyncio.Event], method: str, path: str, **kwargs) -> Any:
        if abort is None:
            return await self._request(method, path, **kwargs)
        if abort.is_set():
            return None

        request = asyncio.ensure_future(self._request(method, path, **kwargs))
        aborted = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait({request, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
        if request in done:
            return request.result()
        request.cancel()
        try:
            await request
        except asyncio.CancelledError:
            pass
        return None

    # Entitlements

    async def get_balance(self, abort: Optional[asyncio.Event] = None) -> Optional[CreditBalance]:
        data = await self._abortable(abort, "GET", "/api/credits/balance")
        return CreditBalance.model_validate(data) if data is not None else None

    async def can_create(self, abort: Optional[asyncio.Event] = None) -> Optional[CanCreateResult]:
        data = await self._abortable(abort, "GET", "/api/credits/can-create")
        return CanCreateResult.model_validate(data) if data is not None else None

    # Creations

    async def list_creations(self, abort: Optional[asyncio.Event] = None) -> Optional[List[Creation]]:
        data = await self._abortable(abort, "GET", "/api/creations")
        if data is None:
            return None
        return [Creation.model_validate(item) for item in data["creations"]]

    async def get_creation(self, creation_id: str, abort: Optional[asyncio.Event] = None) -> Optional[CreationDetail]:
        data = await self._abortable(abort, "GET", f"/api/creations/{creation_id}")
        return CreationDetail.model_validate(data) if data is not None else None

    async def delete_creation(self, creation_id: str) -> None:
        await self._request("DELETE", f"/api/creations/{creation_id}")

    # Checkout

    async def get_book_price(self, order_type: OrderType) -> Optional[BookPrice]:
        data = await self._request("GET", "/api/billing/book-prices")
        price = data.get(order_type.value)
        return BookPrice.model_validate(price) if price else None

    async def quote_shipping(self, shipping: ShippingInfo, order_type: OrderType, quantity: int = 1) -> List[ShippingOption]:
        data = await self._request(
            "POST",
            "/api/shipping/quote",
            json={
                "shipping_address": shipping.model_dump(),
                "quantity": quantity,
                "book_type": order_type.value,
            },
        )
        return [ShippingOption.model_validate(option) for option in data["shipping_options"]]

    async def create_book_checkout(self, request: BookCheckoutRequest) -> CheckoutSession:
        data = await self._request("POST", "/api/billing/book-checkout", json=request.model_dump(mode="json"))
        return CheckoutSession.model_validate(data)

    async def create_credit_checkout(self, pack_name: str, email: Optional[str] = None) -> str:
        body: Dict[str, Any] = {"pack_name": pack_name}
        if email:
            body["email"] = email
        data = await self._request("POST", "/api/billing/credit-checkout", json=body)
        return data["url"]

    # Orders

    async def get_order_status(self, order_id: str, abort: Optional[asyncio.Event] = None) -> Optional[OrderStatusView]:
        data = await self._abortable(abort, "GET", f"/api/orders/{order_id}/status")
        return OrderStatusView.model_validate(data) if data is not None else None
