"""
Stripe payment provider implementation.

Implements PaymentProvider using the Stripe API: prices are resolved by
lookup key, checkout sessions use inline price_data so the charged amount
always matches what the server computed, and webhooks are verified with
stripe.Webhook.construct_event.
"""
import json
from typing import Dict, Any, List, Optional

import stripe

from drawbook.core.config import settings
from drawbook.core.errors import PaymentProviderError, WebhookSignatureError
from drawbook.features.billing.provider import (
    CheckoutLineItem,
    CheckoutSessionResult,
    PaymentWebhookEvent,
    ProviderPrice,
)


class StripeProvider:
    """Stripe implementation of PaymentProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise PaymentProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def get_prices(self, lookup_keys: List[str]) -> Dict[str, ProviderPrice]:
        try:
            prices = stripe.Price.list(
                lookup_keys=lookup_keys,
                active=True,
                expand=["data.product"],
                limit=len(lookup_keys) or 1,
            )
        except stripe.StripeError as e:
            raise PaymentProviderError(f"Stripe price lookup failed: {e}")

        result: Dict[str, ProviderPrice] = {}
        for price in prices.data:
            product = price["product"]
            # Expanded product objects carry the display name
            product_name = None if isinstance(product, str) else product["name"]
            result[price["lookup_key"]] = ProviderPrice(
                price_id=price["id"],
                lookup_key=price["lookup_key"],
                unit_amount=price["unit_amount"],
                currency=price["currency"],
                product_name=product_name,
            )
        return result

    def create_checkout_session(
        self,
        line_items: List[CheckoutLineItem],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        client_reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSessionResult:
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": item.name,
                            **({"description": item.description} if item.description else {}),
                        },
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if client_reference_id:
            params["client_reference_id"] = client_reference_id

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise PaymentProviderError(f"Stripe checkout session creation failed: {e}")
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> PaymentWebhookEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise WebhookSignatureError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
            event = json.loads(body)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> PaymentWebhookEvent:
        data = event["data"]["object"]
        metadata = data.get("metadata") or {}
        is_session = event["type"].startswith("checkout.session.")
        details = data.get("customer_details") or {}
        return PaymentWebhookEvent(
            event_id=event["id"],
            event_type=event["type"],
            session_id=data.get("id") if is_session else None,
            payment_intent=data.get("payment_intent"),
            client_reference_id=data.get("client_reference_id"),
            payment_status=data.get("payment_status"),
            amount_total=data.get("amount_total"),
            customer_email=data.get("customer_email") or details.get("email"),
            metadata=dict(metadata),
        )
