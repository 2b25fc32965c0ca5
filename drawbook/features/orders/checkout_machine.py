"""
Book checkout wizard as a pure state machine.

    DEDICATION -> REVIEW                                         (ebook)
    DEDICATION -> SHIPPING -> LOADING_RATES -> SELECT_SHIPPING -> REVIEW   (printed)
    REVIEW -> REDIRECT                                           (hosted payment page)

`transition(state, event)` never performs I/O. The async driver in
checkout_flow.py watches for LOADING_RATES and submissions and feeds the
results back in as RatesLoaded / RatesFailed / CheckoutCreated /
CheckoutFailed events. Events that do not apply to the current step leave
the state unchanged.

There is no paid state: payment is confirmed by the payment webhook and
observed later through the order status read.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from drawbook.models.order import (
    BookCheckoutRequest,
    BookPrice,
    OrderType,
    ShippingInfo,
    ShippingLevel,
    ShippingOption,
)

MAX_DEDICATION_LENGTH = 500


class Step(str, Enum):
    DEDICATION = "DEDICATION"
    SHIPPING = "SHIPPING"
    LOADING_RATES = "LOADING_RATES"
    SELECT_SHIPPING = "SELECT_SHIPPING"
    REVIEW = "REVIEW"
    REDIRECT = "REDIRECT"
    CLOSED = "CLOSED"


class PriceStatus(str, Enum):
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class CheckoutContext:
    """Who is buying what. Fixed for the life of one wizard."""
    user_id: str
    creation_id: str
    user_email: str
    order_type: OrderType
    is_gift: bool = False
    cover_color_id: str = "soft-blue"
    text_color_id: str = "gunmetal"


@dataclass(frozen=True)
class CheckoutState:
    context: CheckoutContext
    step: Step = Step.DEDICATION
    dedication: str = ""
    shipping: ShippingInfo = field(default_factory=ShippingInfo)
    shipping_errors: Dict[str, str] = field(default_factory=dict)
    address_validated: bool = False
    rates: Tuple[ShippingOption, ...] = ()
    selected_rate_id: Optional[ShippingLevel] = None
    price: Optional[BookPrice] = None
    price_status: PriceStatus = PriceStatus.LOADING
    submitting: bool = False
    error: Optional[str] = None
    checkout_url: Optional[str] = None
    order_id: Optional[str] = None

    @property
    def is_physical(self) -> bool:
        return self.context.order_type.is_physical

    @property
    def selected_rate(self) -> Optional[ShippingOption]:
        return next((rate for rate in self.rates if rate.id == self.selected_rate_id), None)


# Events


@dataclass(frozen=True)
class EditDedication:
    text: str


@dataclass(frozen=True)
class EditShipping:
    shipping: ShippingInfo


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class RatesLoaded:
    options: Tuple[ShippingOption, ...]


@dataclass(frozen=True)
class RatesFailed:
    message: str


@dataclass(frozen=True)
class SelectRate:
    rate_id: ShippingLevel


@dataclass(frozen=True)
class PriceLoaded:
    price: Optional[BookPrice]


@dataclass(frozen=True)
class PriceFailed:
    message: str


@dataclass(frozen=True)
class SubmitCheckout:
    pass


@dataclass(frozen=True)
class CheckoutCreated:
    url: str
    order_id: Optional[str] = None


@dataclass(frozen=True)
class CheckoutFailed:
    message: str


Event = Union[
    EditDedication,
    EditShipping,
    Next,
    Back,
    RatesLoaded,
    RatesFailed,
    SelectRate,
    PriceLoaded,
    PriceFailed,
    SubmitCheckout,
    CheckoutCreated,
    CheckoutFailed,
]


def initial_state(context: CheckoutContext, dedication: str = "") -> CheckoutState:
    return CheckoutState(context=context, dedication=dedication[:MAX_DEDICATION_LENGTH])


def validate_shipping(shipping: ShippingInfo) -> Dict[str, str]:
    """Field -> message for every shipping field that fails; empty when valid."""
    errors: Dict[str, str] = {}
    if len(shipping.name.strip()) < 2:
        errors["name"] = "Please enter the recipient's full name"
    if len(shipping.address1.strip()) < 5:
        errors["address1"] = "Please enter a street address"
    if len(shipping.city.strip()) < 2:
        errors["city"] = "Please enter a city"
    if len(shipping.state.strip()) < 2:
        errors["state"] = "Please enter a state"
    if len(shipping.zip.strip()) < 3:
        errors["zip"] = "Please enter a valid ZIP code"
    if len(re.sub(r"\D", "", shipping.phone)) < 10:
        errors["phone"] = "Please enter a phone number with at least 10 digits"
    if "@" not in shipping.email:
        errors["email"] = "Please enter a valid email address"
    return errors


def can_go_back(state: CheckoutState) -> bool:
    return state.step not in (Step.LOADING_RATES, Step.REDIRECT, Step.CLOSED) and not state.submitting


def can_advance(state: CheckoutState) -> bool:
    if state.step == Step.DEDICATION:
        return True
    if state.step == Step.SHIPPING:
        return not validate_shipping(state.shipping)
    if state.step == Step.SELECT_SHIPPING:
        return state.selected_rate is not None
    return False


def can_checkout(state: CheckoutState) -> bool:
    """Submit is enabled only on REVIEW with a settled price and, for printed books, a chosen rate."""
    if state.step != Step.REVIEW or state.submitting:
        return False
    if state.price_status == PriceStatus.LOADING:
        return False
    if state.is_physical:
        return state.address_validated and state.selected_rate is not None
    return state.price is not None


def progress_percent(state: CheckoutState) -> int:
    if state.step in (Step.REVIEW, Step.REDIRECT):
        return 100
    if state.step == Step.CLOSED:
        return 0
    if not state.is_physical:
        return 50
    return {
        Step.DEDICATION: 20,
        Step.SHIPPING: 40,
        Step.LOADING_RATES: 60,
        Step.SELECT_SHIPPING: 80,
    }[state.step]


def _next(state: CheckoutState) -> CheckoutState:
    if state.step == Step.DEDICATION:
        return replace(state, step=Step.SHIPPING if state.is_physical else Step.REVIEW, error=None)

    if state.step == Step.SHIPPING:
        errors = validate_shipping(state.shipping)
        if errors:
            return replace(state, shipping_errors=errors)
        return replace(
            state,
            step=Step.LOADING_RATES,
            shipping_errors={},
            address_validated=True,
            rates=(),
            selected_rate_id=None,
            error=None,
        )

    if state.step == Step.SELECT_SHIPPING:
        if state.selected_rate is None:
            return replace(state, error="Please choose a shipping option")
        return replace(state, step=Step.REVIEW, error=None)

    return state


def _back(state: CheckoutState) -> CheckoutState:
    if not can_go_back(state):
        return state
    previous = {
        Step.DEDICATION: Step.CLOSED,
        Step.SHIPPING: Step.DEDICATION,
        Step.SELECT_SHIPPING: Step.SHIPPING,
        Step.REVIEW: Step.SELECT_SHIPPING if state.is_physical else Step.DEDICATION,
    }[state.step]
    return replace(state, step=previous, error=None)


def transition(state: CheckoutState, event: Event) -> CheckoutState:
    """Apply one event. Pure: returns a new state and never raises for out-of-step events."""
    if state.step in (Step.REDIRECT, Step.CLOSED):
        return state

    if isinstance(event, EditDedication):
        if state.step != Step.DEDICATION:
            return state
        return replace(state, dedication=event.text[:MAX_DEDICATION_LENGTH])

    if isinstance(event, EditShipping):
        if state.step != Step.SHIPPING:
            return state
        # A changed address invalidates any quote taken for the old one
        changed = event.shipping != state.shipping
        return replace(
            state,
            shipping=event.shipping,
            shipping_errors={},
            address_validated=state.address_validated and not changed,
            rates=() if changed else state.rates,
            selected_rate_id=None if changed else state.selected_rate_id,
        )

    if isinstance(event, Next):
        return _next(state)

    if isinstance(event, Back):
        return _back(state)

    if isinstance(event, RatesLoaded):
        if state.step != Step.LOADING_RATES:
            return state
        if not event.options:
            return replace(state, step=Step.SHIPPING, error="No shipping options available for this address")
        return replace(state, step=Step.SELECT_SHIPPING, rates=tuple(event.options), selected_rate_id=None, error=None)

    if isinstance(event, RatesFailed):
        if state.step != Step.LOADING_RATES:
            return state
        return replace(state, step=Step.SHIPPING, rates=(), selected_rate_id=None, error=event.message)

    if isinstance(event, SelectRate):
        if state.step != Step.SELECT_SHIPPING:
            return state
        if not any(rate.id == event.rate_id for rate in state.rates):
            return state
        return replace(state, selected_rate_id=event.rate_id, error=None)

    if isinstance(event, PriceLoaded):
        return replace(state, price=event.price, price_status=PriceStatus.LOADED)

    if isinstance(event, PriceFailed):
        return replace(state, price=None, price_status=PriceStatus.FAILED)

    if isinstance(event, SubmitCheckout):
        if not can_checkout(state):
            return state
        return replace(state, submitting=True, error=None)

    if isinstance(event, CheckoutCreated):
        if state.step != Step.REVIEW or not state.submitting:
            return state
        return replace(state, step=Step.REDIRECT, submitting=False, checkout_url=event.url, order_id=event.order_id)

    if isinstance(event, CheckoutFailed):
        if state.step != Step.REVIEW or not state.submitting:
            return state
        # Stay on REVIEW with everything entered so far; submit re-enables
        return replace(state, submitting=False, error=event.message)

    return state


def build_checkout_request(state: CheckoutState) -> BookCheckoutRequest:
    """The create-book-checkout body for the current REVIEW state."""
    ctx = state.context
    shipping = None
    level = shipping_cost = book_cost = None
    if state.is_physical:
        email = state.shipping.email or ctx.user_email
        shipping = replace_shipping_email(state.shipping, email)
        rate = state.selected_rate
        if rate is not None:
            level = rate.id
            shipping_cost = rate.shipping_cost
            book_cost = rate.product_cost
    return BookCheckoutRequest(
        user_id=ctx.user_id,
        creation_id=ctx.creation_id,
        product_type=ctx.order_type,
        dedication_text=state.dedication or None,
        user_email=ctx.user_email,
        is_gift=ctx.is_gift,
        cover_color_id=ctx.cover_color_id,
        text_color_id=ctx.text_color_id,
        shipping=shipping,
        shipping_level_id=level,
        shipping_cost=shipping_cost,
        book_cost=book_cost,
    )


def replace_shipping_email(shipping: ShippingInfo, email: str) -> ShippingInfo:
    return shipping.model_copy(update={"email": email})
