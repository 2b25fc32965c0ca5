"""Book price catalogue backed by payment provider lookup keys."""
import logging
from typing import Dict, Optional

from drawbook.core.config import settings
from drawbook.core.errors import PaymentProviderError
from drawbook.features.billing.provider import PaymentProvider
from drawbook.models.order import BookPrice, OrderType

logger = logging.getLogger("drawbook")

LOOKUP_KEYS = {
    OrderType.EBOOK: "book_digital",
    OrderType.SOFTCOVER: "book_softcover",
    OrderType.HARDCOVER: "book_hardcover",
}

PRODUCT_NAMES = {
    OrderType.EBOOK: "Digital Storybook",
    OrderType.SOFTCOVER: "Softcover Book",
    OrderType.HARDCOVER: "Hardcover Book",
}

# Retail prices used for shipping totals when the catalogue is unreachable
FALLBACK_RETAIL_CENTS = {
    OrderType.SOFTCOVER: 2499,
    OrderType.HARDCOVER: 3499,
}


def format_price(amount_cents: int, currency: str = "usd") -> str:
    symbol = "$" if currency.lower() == "usd" else f"{currency.upper()} "
    return f"{symbol}{amount_cents / 100:.2f}"


def is_available(order_type: OrderType) -> bool:
    return {
        OrderType.EBOOK: settings.EBOOK_ENABLED,
        OrderType.SOFTCOVER: settings.SOFTCOVER_ENABLED,
        OrderType.HARDCOVER: settings.HARDCOVER_ENABLED,
    }[order_type]


def get_book_prices(provider: PaymentProvider) -> Dict[OrderType, BookPrice]:
    """Current retail price per product type. Types without a catalogue price are omitted."""
    prices = provider.get_prices(list(LOOKUP_KEYS.values()))
    result: Dict[OrderType, BookPrice] = {}
    for order_type, key in LOOKUP_KEYS.items():
        price = prices.get(key)
        if price is None:
            continue
        result[order_type] = BookPrice(
            product_type=order_type,
            price_id=price.price_id,
            amount=price.unit_amount,
            currency=price.currency,
            display_price=format_price(price.unit_amount, price.currency),
            product_name=price.product_name or PRODUCT_NAMES[order_type],
        )
    return result


def get_retail_price(order_type: OrderType, provider: Optional[PaymentProvider]) -> int:
    """Retail price in cents, falling back to fixed prices for printed books."""
    if provider is not None:
        try:
            price = provider.get_prices([LOOKUP_KEYS[order_type]]).get(LOOKUP_KEYS[order_type])
        except PaymentProviderError as e:
            logger.warning("pricing.lookup_failed", extra={"error_code": e.code})
            price = None
        if price is not None:
            return price.unit_amount
    if order_type not in FALLBACK_RETAIL_CENTS:
        raise PaymentProviderError("Price unavailable")
    return FALLBACK_RETAIL_CENTS[order_type]
