"""
Payment provider protocol.

Defines the interface the checkout and webhook services use, so Stripe can
be swapped or mocked without changing business logic.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field


@dataclass
class ProviderPrice:
    """A catalogue price resolved by lookup key."""
    price_id: str
    lookup_key: str
    unit_amount: int  # cents
    currency: str
    product_name: Optional[str] = None


@dataclass
class CheckoutLineItem:
    name: str
    unit_amount: int  # cents
    quantity: int = 1
    description: Optional[str] = None


@dataclass
class CheckoutSessionResult:
    session_id: str
    url: str


@dataclass
class PaymentWebhookEvent:
    """Normalized payment webhook event."""
    event_id: str
    event_type: str
    session_id: Optional[str] = None
    payment_intent: Optional[str] = None
    client_reference_id: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    customer_email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must handle:
    - Price lookup by stable lookup key
    - One-off hosted checkout session creation
    - Webhook signature verification and parsing
    """

    def get_prices(self, lookup_keys: List[str]) -> Dict[str, ProviderPrice]:
        """
        Resolve active prices for the given lookup keys.

        Returns:
            Mapping of lookup key to price. Unknown keys are omitted.

        Raises:
            PaymentProviderError: If the provider cannot be reached
        """
        ...

    def create_checkout_session(
        self,
        line_items: List[CheckoutLineItem],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        client_reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSessionResult:
        """
        Create a hosted, one-off payment checkout session.

        Raises:
            PaymentProviderError: If session creation fails
        """
        ...

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> PaymentWebhookEvent:
        """
        Verify webhook signature and parse event.

        Raises:
            WebhookSignatureError: If signature invalid or payload malformed
        """
        ...
