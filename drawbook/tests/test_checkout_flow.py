"""
Checkout wizard driver with fake price, rate and checkout calls.
"""
from unittest.mock import AsyncMock

import httpx
import pytest

from drawbook.core.errors import PaymentProviderError, ShippingProviderError
from drawbook.features.orders import checkout_machine as m
from drawbook.features.orders.checkout_flow import CheckoutWizard, DEFAULT_CHECKOUT_ERROR
from drawbook.models.order import BookPrice, CheckoutSession, OrderType, ShippingInfo, ShippingLevel, ShippingOption

ADDRESS = ShippingInfo(
    name="Ada Lovelace",
    address1="123 Main Street",
    city="Beverly Hills",
    state="CA",
    zip="90210",
    phone="3105550100",
    email="ada@example.com",
)

GROUND = ShippingOption(
    id=ShippingLevel.GROUND,
    name="Ground",
    product_cost=2499,
    shipping_cost=750,
    total_cost=3249,
    delivery_days="5-7 business days",
)

EBOOK_PRICE = BookPrice(product_type=OrderType.EBOOK, price_id="price_ebook", amount=1299, display_price="$12.99")


def _wizard(order_type, fetch_price=None, fetch_rates=None, create_checkout=None):
    context = m.CheckoutContext(
        user_id="user_1",
        creation_id="creation_1",
        user_email="parent@example.com",
        order_type=order_type,
    )
    return CheckoutWizard(
        context,
        fetch_price=fetch_price or AsyncMock(return_value=None),
        fetch_rates=fetch_rates or AsyncMock(return_value=[GROUND]),
        create_checkout=create_checkout or AsyncMock(return_value=CheckoutSession(url="https://checkout.stripe.com/c/1", order_id="order_1")),
    )


@pytest.mark.asyncio
async def test_invalid_zip_then_provider_failure_then_retry():
    fetch_rates = AsyncMock(
        side_effect=[
            ShippingProviderError("Could not reach the shipping provider. Please try again."),
            [GROUND],
        ]
    )
    wizard = _wizard(OrderType.SOFTCOVER, fetch_rates=fetch_rates)
    await wizard.load_price()

    await wizard.next()
    wizard.edit_shipping(ADDRESS.model_copy(update={"zip": "1"}))
    state = await wizard.next()
    assert state.step == m.Step.SHIPPING
    assert "zip" in state.shipping_errors
    fetch_rates.assert_not_called()

    wizard.edit_shipping(ADDRESS)
    state = await wizard.next()
    assert state.step == m.Step.SHIPPING
    assert state.error == "Could not reach the shipping provider. Please try again."
    assert state.shipping.zip == "90210"

    state = await wizard.next()
    assert state.step == m.Step.SELECT_SHIPPING
    assert state.rates == (GROUND,)
    assert fetch_rates.await_count == 2


@pytest.mark.asyncio
async def test_network_error_on_rates_uses_generic_message():
    wizard = _wizard(OrderType.HARDCOVER, fetch_rates=AsyncMock(side_effect=httpx.ConnectError("down")))
    await wizard.next()
    wizard.edit_shipping(ADDRESS)

    state = await wizard.next()
    assert state.step == m.Step.SHIPPING
    assert state.error == "Failed to get shipping rates"


@pytest.mark.asyncio
async def test_ebook_checkout_redirects_with_price():
    fetch_price = AsyncMock(return_value=EBOOK_PRICE)
    create_checkout = AsyncMock(return_value=CheckoutSession(url="https://checkout.stripe.com/c/ebook", order_id="order_9"))
    wizard = _wizard(OrderType.EBOOK, fetch_price=fetch_price, create_checkout=create_checkout)

    await wizard.load_price()
    wizard.edit_dedication("For Sam")
    await wizard.next()
    assert wizard.state.price.display_price == "$12.99"

    state = await wizard.submit()
    assert state.step == m.Step.REDIRECT
    assert state.checkout_url == "https://checkout.stripe.com/c/ebook"
    assert state.order_id == "order_9"
    request = create_checkout.await_args.args[0]
    assert request.product_type == OrderType.EBOOK
    assert request.dedication_text == "For Sam"
    assert request.shipping is None


@pytest.mark.asyncio
async def test_price_is_fetched_once_per_product():
    fetch_price = AsyncMock(return_value=EBOOK_PRICE)
    wizard = _wizard(OrderType.EBOOK, fetch_price=fetch_price)

    await wizard.load_price()
    await wizard.load_price()

    assert fetch_price.await_count == 1
    assert wizard.state.price_status == m.PriceStatus.LOADED


@pytest.mark.asyncio
async def test_price_failure_blocks_ebook_checkout():
    create_checkout = AsyncMock()
    wizard = _wizard(
        OrderType.EBOOK,
        fetch_price=AsyncMock(side_effect=PaymentProviderError("Stripe down")),
        create_checkout=create_checkout,
    )
    await wizard.load_price()
    await wizard.next()

    state = await wizard.submit()
    assert state.step == m.Step.REVIEW
    create_checkout.assert_not_called()


@pytest.mark.asyncio
async def test_checkout_failure_preserves_wizard_and_allows_resubmit():
    create_checkout = AsyncMock(
        side_effect=[
            httpx.ReadTimeout("slow"),
            CheckoutSession(url="https://checkout.stripe.com/c/2", order_id="order_2"),
        ]
    )
    wizard = _wizard(OrderType.SOFTCOVER, create_checkout=create_checkout)
    await wizard.load_price()
    await wizard.next()
    wizard.edit_shipping(ADDRESS)
    await wizard.next()
    wizard.select_rate(ShippingLevel.GROUND)
    await wizard.next()

    state = await wizard.submit()
    assert state.step == m.Step.REVIEW
    assert state.error == DEFAULT_CHECKOUT_ERROR
    assert state.selected_rate_id == ShippingLevel.GROUND
    assert wizard.progress == 100

    state = await wizard.submit()
    assert state.step == m.Step.REDIRECT
    request = create_checkout.await_args.args[0]
    assert request.shipping_level_id == ShippingLevel.GROUND
    assert request.shipping_cost == 750
    assert request.book_cost == 2499


@pytest.mark.asyncio
async def test_back_from_review_reaches_rate_selection():
    wizard = _wizard(OrderType.SOFTCOVER)
    await wizard.load_price()
    await wizard.next()
    wizard.edit_shipping(ADDRESS)
    await wizard.next()
    wizard.select_rate(ShippingLevel.GROUND)
    await wizard.next()

    assert wizard.back().step == m.Step.SELECT_SHIPPING
