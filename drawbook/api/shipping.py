"""
Shipping quotes for printed books.

POST /api/shipping/quote. Anonymous callers get 401 rather than an empty
quote; a provider outage is a retryable 502.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from drawbook.core.auth import get_optional_user_id
from drawbook.features.shipping import service as shipping
from drawbook.models.order import ShippingOption, ShippingQuoteRequest

router = APIRouter(prefix="/shipping", tags=["shipping"])


class ShippingQuoteResponse(BaseModel):
    shipping_options: List[ShippingOption]


@router.post("/quote", response_model=ShippingQuoteResponse)
async def quote_shipping(body: ShippingQuoteRequest, user_id: Optional[str] = Depends(get_optional_user_id)):
    options = await shipping.quote(user_id, body.shipping_address, body.quantity, body.book_type)
    return {"shipping_options": options}
