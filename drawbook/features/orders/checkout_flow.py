"""
Async driver for the checkout state machine.

The wizard owns one CheckoutState and performs the I/O the machine asks for:
the review price (once per product type), the shipping quote when SHIPPING
advances to LOADING_RATES, and the checkout session on submit. Provider
failures come back in as events, so entered data survives every error.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from drawbook.core.errors import AppError
from drawbook.features.orders import checkout_machine as machine
from drawbook.models.order import (
    BookCheckoutRequest,
    BookPrice,
    CheckoutSession,
    OrderType,
    ShippingInfo,
    ShippingLevel,
    ShippingOption,
)

logger = logging.getLogger("drawbook")

PriceFetcher = Callable[[OrderType], Awaitable[Optional[BookPrice]]]
RateFetcher = Callable[[ShippingInfo, OrderType], Awaitable[List[ShippingOption]]]
CheckoutCreator = Callable[[BookCheckoutRequest], Awaitable[CheckoutSession]]

DEFAULT_RATES_ERROR = "Failed to get shipping rates"
DEFAULT_CHECKOUT_ERROR = "Failed to start checkout. Please try again."


def _message(exc: Exception, default: str) -> str:
    if isinstance(exc, AppError):
        return exc.message
    return default


class CheckoutWizard:
    """Drives one book checkout from dedication to the hosted payment redirect."""

    def __init__(
        self,
        context: machine.CheckoutContext,
        fetch_price: PriceFetcher,
        fetch_rates: RateFetcher,
        create_checkout: CheckoutCreator,
        dedication: str = "",
    ):
        self.fetch_price = fetch_price
        self.fetch_rates = fetch_rates
        self.create_checkout = create_checkout
        self.state = machine.initial_state(context, dedication)
        self._price_cache: Dict[OrderType, Optional[BookPrice]] = {}

    def dispatch(self, event: machine.Event) -> machine.CheckoutState:
        self.state = machine.transition(self.state, event)
        return self.state

    @property
    def progress(self) -> int:
        return machine.progress_percent(self.state)

    async def load_price(self) -> machine.CheckoutState:
        """Fetch the review price for this product type. Repeated calls reuse the first answer."""
        order_type = self.state.context.order_type
        if order_type in self._price_cache:
            return self.dispatch(machine.PriceLoaded(self._price_cache[order_type]))
        try:
            price = await self.fetch_price(order_type)
        except (AppError, httpx.HTTPError) as e:
            logger.warning("checkout.price_failed", extra={"error_code": getattr(e, "code", type(e).__name__)})
            return self.dispatch(machine.PriceFailed(_message(e, "Price unavailable")))
        self._price_cache[order_type] = price
        return self.dispatch(machine.PriceLoaded(price))

    def edit_dedication(self, text: str) -> machine.CheckoutState:
        return self.dispatch(machine.EditDedication(text))

    def edit_shipping(self, shipping: ShippingInfo) -> machine.CheckoutState:
        return self.dispatch(machine.EditShipping(shipping))

    def select_rate(self, rate_id: ShippingLevel) -> machine.CheckoutState:
        return self.dispatch(machine.SelectRate(rate_id))

    def back(self) -> machine.CheckoutState:
        return self.dispatch(machine.Back())

    async def next(self) -> machine.CheckoutState:
        state = self.dispatch(machine.Next())
        if state.step != machine.Step.LOADING_RATES:
            return state
        try:
            options = await self.fetch_rates(state.shipping, state.context.order_type)
        except (AppError, httpx.HTTPError) as e:
            logger.warning("checkout.rates_failed", extra={"error_code": getattr(e, "code", type(e).__name__)})
            return self.dispatch(machine.RatesFailed(_message(e, DEFAULT_RATES_ERROR)))
        return self.dispatch(machine.RatesLoaded(tuple(options)))

    async def submit(self) -> machine.CheckoutState:
        state = self.dispatch(machine.SubmitCheckout())
        if not state.submitting:
            return state
        request = machine.build_checkout_request(state)
        try:
            session = await self.create_checkout(request)
        except (AppError, httpx.HTTPError) as e:
            logger.warning("checkout.create_failed", extra={"error_code": getattr(e, "code", type(e).__name__)})
            return self.dispatch(machine.CheckoutFailed(_message(e, DEFAULT_CHECKOUT_ERROR)))
        return self.dispatch(machine.CheckoutCreated(url=session.url, order_id=session.order_id))
