"""
Billing service orchestrator.

Coordinates:
- Book price catalogue reads
- Book checkout sessions (creates the pending order)
- Credit pack checkout sessions
- Webhook processing (idempotent per event id)

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from drawbook.core.config import settings
from drawbook.core.database import get_db_session, payment_events
from drawbook.core.errors import (
    ForbiddenError,
    PaymentProviderError,
    ValidationError,
    WebhookSignatureError,
)
from drawbook.core.logging import log_event
from drawbook.features.billing import pricing
from drawbook.features.billing.provider import (
    CheckoutLineItem,
    PaymentProvider,
    PaymentWebhookEvent,
)
from drawbook.features.billing.stripe_provider import StripeProvider
from drawbook.features.credits.service import add_credits, get_pack
from drawbook.features.creations.service import get_creation
from drawbook.features.orders import service as orders
from drawbook.features.orders.checkout_machine import validate_shipping
from drawbook.models.order import BookCheckoutRequest, CheckoutSession, OrderType

logger = logging.getLogger("drawbook")

BOOK_ORDER_SOURCE = "book_checkout"
COMPLETED_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
SETTLED_PAYMENT_STATUSES = {None, "paid", "no_payment_required"}

PRODUCT_DESCRIPTIONS = {
    OrderType.EBOOK: "Drawbook - eBook",
    OrderType.SOFTCOVER: "Drawbook - Softcover Book",
    OrderType.HARDCOVER: "Drawbook - Hardcover Book",
}


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[PaymentProvider]:
    """Get payment provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except PaymentProviderError:
        return None


def _require_provider() -> PaymentProvider:
    provider = get_provider()
    if provider is None:
        raise PaymentProviderError("Payments are not available right now")
    return provider


def get_book_prices() -> Dict[str, Any]:
    """Retail price per product type plus availability flags."""
    prices = pricing.get_book_prices(_require_provider())
    response: Dict[str, Any] = {
        "availability": {order_type.value: pricing.is_available(order_type) for order_type in OrderType},
    }
    for order_type, price in prices.items():
        response[order_type.value] = price
    return response


def _validate_book_checkout(auth_user_id: str, request: BookCheckoutRequest) -> None:
    if request.user_id != auth_user_id:
        raise ForbiddenError("Cannot create an order for another user")
    if not pricing.is_available(request.product_type):
        raise ValidationError(f"{request.product_type.value} books are not available right now")
    if not request.user_email or "@" not in request.user_email:
        raise ValidationError("A valid email is required")
    if request.product_type.is_physical:
        if request.shipping is None:
            raise ValidationError("Shipping address required for physical books")
        errors = validate_shipping(request.shipping)
        if errors:
            raise ValidationError(next(iter(errors.values())))
        if request.shipping_level_id is None or request.shipping_cost is None:
            raise ValidationError("Please choose a shipping option")
        if request.shipping_cost < 0 or (request.book_cost or 0) < 0:
            raise ValidationError("Invalid shipping cost")


def _book_amount(provider: PaymentProvider, request: BookCheckoutRequest) -> int:
    """Catalogue price (+ shipping for printed books), or the quoted costs if the lookup fails."""
    shipping_cost = request.shipping_cost if request.product_type.is_physical else 0
    key = pricing.LOOKUP_KEYS[request.product_type]
    try:
        price = provider.get_prices([key]).get(key)
    except PaymentProviderError as e:
        logger.warning("checkout.price_lookup_failed", extra={"error_code": e.code})
        price = None
    if price is not None:
        return price.unit_amount + shipping_cost
    fallback = (request.book_cost or 0) + shipping_cost
    if fallback <= 0:
        raise PaymentProviderError("Price unavailable. Please try again.")
    return fallback


def start_book_checkout(
    auth_user_id: str,
    request: BookCheckoutRequest,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutSession:
    """
    Open a hosted checkout for one book and record the pending order.

    The order is written only after the session exists, so a provider failure
    leaves nothing behind and the caller can simply resubmit.
    """
    _validate_book_checkout(auth_user_id, request)
    # Locked or foreign creations cannot be ordered
    get_creation(auth_user_id, request.creation_id)

    provider = _require_provider()
    amount = _book_amount(provider, request)
    is_physical = request.product_type.is_physical

    metadata = {
        "user_id": request.user_id,
        "creation_id": request.creation_id,
        "product_type": request.product_type.value,
        "dedication_text": (request.dedication_text or "")[:500],
        "cover_color_id": request.cover_color_id,
        "text_color_id": request.text_color_id,
        "is_gift": "true" if request.is_gift else "false",
        "order_source": BOOK_ORDER_SOURCE,
    }
    if is_physical:
        metadata.update(
            shipping_level_id=request.shipping_level_id.value if request.shipping_level_id else "MAIL",
            book_cost=str(request.book_cost or 0),
            shipping_cost=str(request.shipping_cost or 0),
        )

    base = settings.SITE_URL.rstrip("/")
    success = f"{success_url or base + '/order-success'}?session_id={{CHECKOUT_SESSION_ID}}"
    cancel = cancel_url or f"{base}/order-cancelled"

    session = provider.create_checkout_session(
        line_items=[
            CheckoutLineItem(
                name=PRODUCT_DESCRIPTIONS[request.product_type],
                description="Printed book with shipping" if is_physical else "Digital storybook download",
                unit_amount=amount,
            )
        ],
        success_url=success,
        cancel_url=cancel,
        customer_email=request.user_email,
        client_reference_id=request.user_id,
        metadata=metadata,
    )
    order = orders.create_pending_order(request, session.session_id, amount)
    return CheckoutSession(url=session.url, order_id=order.id)


def start_credit_checkout(
    user_id: str,
    pack_name: str,
    email: Optional[str] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> str:
    """Open a hosted checkout for a credit pack. Returns the checkout URL."""
    pack = get_pack(pack_name)
    provider = _require_provider()
    base = settings.SITE_URL.rstrip("/")
    session = provider.create_checkout_session(
        line_items=[CheckoutLineItem(name=f"{pack.label} Pack - {pack.credits} Credits", unit_amount=pack.price_cents)],
        success_url=success_url or f"{base}/purchase-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=cancel_url or f"{base}/",
        customer_email=email,
        client_reference_id=user_id,
        metadata={"user_id": user_id, "pack_name": pack.name, "credits": str(pack.credits)},
    )
    log_event("info", "credits.checkout_started", user_id=user_id, extra={"pack_name": pack.name})
    return session.url


def apply_payment_event(event: PaymentWebhookEvent) -> None:
    """Route a verified payment event to the ledger or the order it belongs to."""
    if event.event_type not in COMPLETED_EVENTS:
        return
    if event.payment_status not in SETTLED_PAYMENT_STATUSES:
        # Delayed payment methods complete later via async_payment_succeeded
        return

    metadata = event.metadata or {}
    if metadata.get("order_source") == BOOK_ORDER_SOURCE:
        if not event.session_id:
            raise ValidationError("Book checkout event without session id")
        orders.mark_payment_received(event.session_id, event.payment_intent, event.amount_total)
        return

    pack_name = metadata.get("pack_name")
    if pack_name:
        user_id = event.client_reference_id or metadata.get("user_id")
        if not user_id:
            raise ValidationError("Credit pack event without user")
        payment_ref = event.payment_intent or event.session_id
        add_credits(user_id, pack_name, payment_ref)


def process_webhook_event(headers: Dict[str, str], body: bytes) -> PaymentWebhookEvent:
    """
    Process payment webhook event (idempotent).

    1. Verify signature
    2. Check idempotency (skip if already processed)
    3. Apply state changes
    4. Mark as processed

    An event that failed earlier is recorded but unprocessed, so a provider
    retry runs it again; ledger and order updates are themselves idempotent.

    Raises:
        WebhookSignatureError: If signature invalid
    """
    provider = get_provider()
    if not provider:
        raise WebhookSignatureError("Billing not enabled")

    event = provider.parse_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    with get_db_session() as session:
        existing = session.execute(
            select(payment_events.c.id, payment_events.c.processed).where(
                payment_events.c.event_id == event.event_id
            )
        ).fetchone()

    if existing and existing.processed:
        log_event("info", "billing.webhook_duplicate", event_type=event.event_type, extra={"event_id": event.event_id})
        return event

    if not existing:
        try:
            with get_db_session() as session:
                session.execute(
                    insert(payment_events).values(
                        event_id=event.event_id,
                        event_type=event.event_type,
                        payload_hash=payload_hash,
                        processed=False,
                    )
                )
        except IntegrityError:
            # Race condition: another delivery already recorded this event
            return event

    try:
        apply_payment_event(event)
        with get_db_session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.event_id == event.event_id)
                .values(processed=True, processed_at=datetime.now(timezone.utc), error=None)
            )
    except Exception as e:
        with get_db_session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.event_id == event.event_id)
                .values(error=str(e))
            )
        raise

    log_event("info", "billing.webhook_processed", event_type=event.event_type, extra={"event_id": event.event_id})
    return event
