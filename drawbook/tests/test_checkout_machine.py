"""
Checkout wizard transitions. Pure: no I/O, every step is an event.
"""
import pytest

from drawbook.features.orders import checkout_machine as m
from drawbook.models.order import BookPrice, OrderType, ShippingInfo, ShippingLevel, ShippingOption

VALID_ADDRESS = ShippingInfo(
    name="Ada Lovelace",
    address1="123 Main Street",
    city="Beverly Hills",
    state="CA",
    zip="90210",
    phone="(310) 555-0100",
    email="ada@example.com",
)

RATES = (
    ShippingOption(
        id=ShippingLevel.MAIL,
        name="Standard Mail",
        product_cost=2499,
        shipping_cost=499,
        total_cost=2998,
        delivery_days="7-14 business days",
    ),
    ShippingOption(
        id=ShippingLevel.EXPRESS,
        name="Express",
        product_cost=2499,
        shipping_cost=2499,
        total_cost=4998,
        delivery_days="1-3 business days",
    ),
)

EBOOK_PRICE = BookPrice(product_type=OrderType.EBOOK, price_id="price_ebook", amount=1299, display_price="$12.99")


def _context(order_type):
    return m.CheckoutContext(
        user_id="user_1",
        creation_id="creation_1",
        user_email="parent@example.com",
        order_type=order_type,
    )


def _run(state, *events):
    for event in events:
        state = m.transition(state, event)
    return state


def _physical_at_review():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    return _run(
        state,
        m.PriceLoaded(None),
        m.Next(),
        m.EditShipping(VALID_ADDRESS),
        m.Next(),
        m.RatesLoaded(RATES),
        m.SelectRate(ShippingLevel.EXPRESS),
        m.Next(),
    )


def test_ebook_goes_straight_to_review():
    state = m.initial_state(_context(OrderType.EBOOK))
    assert m.progress_percent(state) == 50

    state = m.transition(state, m.Next())
    assert state.step == m.Step.REVIEW
    assert m.progress_percent(state) == 100


def test_physical_walks_every_step():
    state = m.initial_state(_context(OrderType.HARDCOVER))
    seen = [(state.step, m.progress_percent(state))]
    for event in (m.Next(), m.EditShipping(VALID_ADDRESS), m.Next(), m.RatesLoaded(RATES), m.SelectRate(ShippingLevel.MAIL), m.Next()):
        state = m.transition(state, event)
        seen.append((state.step, m.progress_percent(state)))

    assert seen == [
        (m.Step.DEDICATION, 20),
        (m.Step.SHIPPING, 40),
        (m.Step.SHIPPING, 40),
        (m.Step.LOADING_RATES, 60),
        (m.Step.SELECT_SHIPPING, 80),
        (m.Step.SELECT_SHIPPING, 80),
        (m.Step.REVIEW, 100),
    ]


def test_invalid_zip_stays_on_shipping_with_field_error():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    state = _run(state, m.Next(), m.EditShipping(VALID_ADDRESS.model_copy(update={"zip": "1"})), m.Next())

    assert state.step == m.Step.SHIPPING
    assert set(state.shipping_errors) == {"zip"}


def test_rate_failure_returns_to_shipping_with_address_kept():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    state = _run(state, m.Next(), m.EditShipping(VALID_ADDRESS), m.Next())
    assert state.step == m.Step.LOADING_RATES

    state = m.transition(state, m.RatesFailed("Could not reach the shipping provider. Please try again."))
    assert state.step == m.Step.SHIPPING
    assert state.error == "Could not reach the shipping provider. Please try again."
    assert state.shipping == VALID_ADDRESS
    assert state.rates == ()


def test_empty_quote_returns_to_shipping():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    state = _run(state, m.Next(), m.EditShipping(VALID_ADDRESS), m.Next(), m.RatesLoaded(()))
    assert state.step == m.Step.SHIPPING
    assert state.error


def test_back_is_blocked_while_rates_load():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    state = _run(state, m.Next(), m.EditShipping(VALID_ADDRESS), m.Next())

    assert m.transition(state, m.Back()) is state


def test_can_advance_tracks_each_step():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    assert m.can_advance(state)

    state = m.transition(state, m.Next())
    assert not m.can_advance(state)
    state = m.transition(state, m.EditShipping(VALID_ADDRESS))
    assert m.can_advance(state)

    state = _run(state, m.Next())
    assert not m.can_advance(state)

    state = _run(state, m.RatesLoaded(RATES))
    assert not m.can_advance(state)
    assert m.can_advance(m.transition(state, m.SelectRate(ShippingLevel.MAIL)))


def test_select_shipping_requires_a_rate():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    state = _run(state, m.Next(), m.EditShipping(VALID_ADDRESS), m.Next(), m.RatesLoaded(RATES), m.Next())

    assert state.step == m.Step.SELECT_SHIPPING
    assert state.error == "Please choose a shipping option"


def test_unknown_rate_is_ignored():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    state = _run(state, m.Next(), m.EditShipping(VALID_ADDRESS), m.Next(), m.RatesLoaded(RATES[:1]))

    assert m.transition(state, m.SelectRate(ShippingLevel.EXPRESS)).selected_rate_id is None


def test_back_from_physical_review_returns_to_rate_selection():
    state = _physical_at_review()
    assert state.step == m.Step.REVIEW

    state = m.transition(state, m.Back())
    assert state.step == m.Step.SELECT_SHIPPING
    assert state.selected_rate_id == ShippingLevel.EXPRESS

    state = _run(state, m.Back(), m.Back(), m.Back())
    assert state.step == m.Step.CLOSED


def test_back_from_ebook_review_returns_to_dedication():
    state = _run(m.initial_state(_context(OrderType.EBOOK)), m.Next(), m.Back())
    assert state.step == m.Step.DEDICATION


def test_editing_address_clears_stale_rates():
    state = _physical_at_review()
    state = _run(state, m.Back(), m.Back())
    assert state.step == m.Step.SHIPPING

    state = m.transition(state, m.EditShipping(VALID_ADDRESS.model_copy(update={"zip": "10001"})))
    assert state.rates == ()
    assert state.selected_rate_id is None
    assert state.address_validated is False


def test_checkout_disabled_until_price_settles():
    state = _run(m.initial_state(_context(OrderType.EBOOK)), m.Next())
    assert m.can_checkout(state) is False
    assert m.transition(state, m.SubmitCheckout()) is state

    state = m.transition(state, m.PriceLoaded(EBOOK_PRICE))
    assert m.can_checkout(state) is True


def test_ebook_without_price_cannot_checkout():
    state = _run(m.initial_state(_context(OrderType.EBOOK)), m.Next(), m.PriceFailed("down"))
    assert state.price_status == m.PriceStatus.FAILED
    assert m.can_checkout(state) is False


def test_checkout_failure_keeps_review_and_reenables_submit():
    state = _physical_at_review()
    state = m.transition(state, m.SubmitCheckout())
    assert state.submitting is True
    assert m.transition(state, m.Back()) is state

    state = m.transition(state, m.CheckoutFailed("Stripe unavailable"))
    assert state.step == m.Step.REVIEW
    assert state.submitting is False
    assert state.error == "Stripe unavailable"
    assert m.can_checkout(state) is True


def test_checkout_created_redirects():
    state = _run(_physical_at_review(), m.SubmitCheckout(), m.CheckoutCreated(url="https://checkout.stripe.com/c/1", order_id="order_1"))

    assert state.step == m.Step.REDIRECT
    assert state.checkout_url == "https://checkout.stripe.com/c/1"
    assert m.transition(state, m.Back()) is state


def test_build_request_for_physical_order():
    state = _physical_at_review()
    state = m.transition(state, m.SubmitCheckout())
    request = m.build_checkout_request(state)

    assert request.product_type == OrderType.SOFTCOVER
    assert request.shipping.zip == "90210"
    assert request.shipping_level_id == ShippingLevel.EXPRESS
    assert request.shipping_cost == 2499
    assert request.book_cost == 2499
    assert request.user_email == "parent@example.com"


def test_build_request_falls_back_to_account_email():
    state = m.initial_state(_context(OrderType.SOFTCOVER))
    no_email = VALID_ADDRESS.model_copy(update={"email": ""})
    state = m.CheckoutState(
        context=state.context,
        step=m.Step.REVIEW,
        shipping=no_email,
        address_validated=True,
        rates=RATES,
        selected_rate_id=ShippingLevel.MAIL,
        price_status=m.PriceStatus.LOADED,
    )

    request = m.build_checkout_request(state)
    assert request.shipping.email == "parent@example.com"


def test_build_request_for_ebook_has_no_shipping():
    state = _run(
        m.initial_state(_context(OrderType.EBOOK)),
        m.EditDedication("For Mia, love Grandma"),
        m.PriceLoaded(EBOOK_PRICE),
        m.Next(),
    )
    request = m.build_checkout_request(state)

    assert request.shipping is None
    assert request.shipping_level_id is None
    assert request.dedication_text == "For Mia, love Grandma"


@pytest.mark.parametrize(
    "field,value",
    [
        ("name", "A"),
        ("address1", "1 St"),
        ("city", "X"),
        ("state", "C"),
        ("zip", "12"),
        ("phone", "555-0100"),
        ("email", "ada.example.com"),
    ],
)
def test_validate_shipping_flags_each_field(field, value):
    errors = m.validate_shipping(VALID_ADDRESS.model_copy(update={field: value}))
    assert list(errors) == [field]


def test_dedication_is_capped():
    state = m.transition(m.initial_state(_context(OrderType.EBOOK)), m.EditDedication("x" * 600))
    assert len(state.dedication) == m.MAX_DEDICATION_LENGTH
