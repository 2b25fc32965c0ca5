"""
Shipping rate quotes for printed books.

Rates are quoted live on every call: they depend on the address and on
what the print provider can currently ship there.
"""
from typing import List, Optional

from drawbook.core.errors import AuthenticationError, ShippingProviderError, ValidationError
from drawbook.core.logging import log_event
from drawbook.features.billing.pricing import get_retail_price
from drawbook.features.billing.service import get_provider
from drawbook.features.shipping.lulu_client import DELIVERY_ESTIMATES, LEVEL_LABELS, LuluClient
from drawbook.models.order import OrderType, ShippingInfo, ShippingOption


async def quote(
    user_id: Optional[str],
    address: ShippingInfo,
    quantity: int,
    book_type: OrderType,
    client: Optional[LuluClient] = None,
) -> List[ShippingOption]:
    """
    Quote every shipping level the print provider offers for this address.

    Raises:
        AuthenticationError: no authenticated user
        ValidationError: ebook orders are not shipped
        ShippingProviderError: provider unreachable or no level available
    """
    if not user_id:
        raise AuthenticationError("Sign in to get shipping rates")
    if not book_type.is_physical:
        raise ValidationError("Shipping is only available for printed books")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    client = client or LuluClient()
    level_quotes = await client.get_shipping_rates(book_type, quantity, address)
    if not level_quotes:
        log_event("warning", "shipping.no_options", user_id=user_id, error_code="shipping_unavailable")
        raise ShippingProviderError("No shipping options available for this address")

    product_cost = get_retail_price(book_type, get_provider()) * quantity
    options = []
    for level_quote in level_quotes:
        shipping_cost = round(level_quote.cost * 100)
        options.append(
            ShippingOption(
                id=level_quote.level,
                name=LEVEL_LABELS[level_quote.level],
                product_cost=product_cost,
                shipping_cost=shipping_cost,
                total_cost=product_cost + shipping_cost,
                currency=level_quote.currency,
                delivery_days=DELIVERY_ESTIMATES[level_quote.level],
            )
        )

    log_event("info", "shipping.quoted", user_id=user_id, extra={"book_type": book_type.value, "options": len(options)})
    return options
