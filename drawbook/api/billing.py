"""
Billing API routes.

- GET  /api/billing/book-prices: retail price per book type
- POST /api/billing/book-checkout: checkout session + pending order
- POST /api/billing/credit-checkout: checkout session for a credit pack
- POST /api/billing/webhook: Stripe webhooks
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from drawbook.core.auth import get_current_user_id
from drawbook.features.billing import service as billing
from drawbook.models.order import BookCheckoutRequest, CheckoutSession

router = APIRouter(prefix="/billing", tags=["billing"])


class CreditCheckoutRequest(BaseModel):
    """Request to buy a credit pack."""
    pack_name: str
    email: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    """Response with checkout URL."""
    url: str


@router.get("/book-prices")
async def get_book_prices() -> Dict[str, Any]:
    """
    Book prices from the Stripe catalogue.

    Returns:
        {"availability": {...}, "ebook": {...}, "softcover": {...}, "hardcover": {...}}

    Errors:
        502: Stripe unavailable (retryable)
    """
    return billing.get_book_prices()


@router.post("/book-checkout", response_model=CheckoutSession)
async def create_book_checkout(body: BookCheckoutRequest, user_id: str = Depends(get_current_user_id)):
    """
    Open a hosted checkout for a book.

    Errors:
        400: Missing fields, unavailable product, or no shipping address
        403: Body user differs from the authenticated user
        404: Creation missing or locked
        502: Stripe unavailable (retryable)
    """
    return billing.start_book_checkout(user_id, body)


@router.post("/credit-checkout", response_model=CheckoutResponse)
async def create_credit_checkout(body: CreditCheckoutRequest, user_id: str = Depends(get_current_user_id)):
    url = billing.start_credit_checkout(
        user_id=user_id,
        pack_name=body.pack_name,
        email=body.email,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    return {"url": url}


@router.post("/webhook")
async def stripe_webhook(req: Request):
    """
    Handle Stripe webhook events.

    Security:
    - Signature verified with STRIPE_WEBHOOK_SECRET
    - Events deduplicated by event id

    Returns:
        {"received": true}

    Errors:
        400: Invalid signature
    """
    body = await req.body()
    event = billing.process_webhook_event(dict(req.headers), body)
    return {"received": True, "event_id": event.event_id}
