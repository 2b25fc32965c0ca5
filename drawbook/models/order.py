from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class OrderType(str, Enum):
    EBOOK = "ebook"
    SOFTCOVER = "softcover"
    HARDCOVER = "hardcover"

    @property
    def is_physical(self) -> bool:
        return self is not OrderType.EBOOK


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAYMENT_RECEIVED = "payment_received"
    PROCESSING = "processing"
    PRINTED = "printed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    COMPLETED = "completed"  # ebook generated and downloadable


class ShippingLevel(str, Enum):
    MAIL = "MAIL"
    GROUND = "GROUND"
    EXPEDITED = "EXPEDITED"
    EXPRESS = "EXPRESS"


class ShippingInfo(BaseModel):
    """Shipping address snapshot as entered in the checkout wizard."""
    model_config = ConfigDict(frozen=True)

    name: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = "US"
    phone: str = ""
    email: str = ""


class ShippingQuoteRequest(BaseModel):
    shipping_address: ShippingInfo
    quantity: int = Field(default=1, ge=1, le=100)
    book_type: OrderType


class ShippingOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: ShippingLevel
    name: str
    product_cost: int  # cents
    shipping_cost: int  # cents
    total_cost: int  # cents
    currency: str = "USD"
    delivery_days: str


class BookPrice(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_type: OrderType
    price_id: Optional[str] = None
    amount: int  # cents
    currency: str = "usd"
    display_price: str
    product_name: Optional[str] = None


class BookCheckoutRequest(BaseModel):
    """Body of the create-book-checkout call."""
    user_id: str
    creation_id: str
    product_type: OrderType
    dedication_text: Optional[str] = Field(default=None, max_length=500)
    user_email: str
    is_gift: bool = False
    cover_color_id: str = "soft-blue"
    text_color_id: str = "gunmetal"
    shipping: Optional[ShippingInfo] = None
    shipping_level_id: Optional[ShippingLevel] = None
    shipping_cost: Optional[int] = Field(default=None, ge=0)  # cents
    book_cost: Optional[int] = Field(default=None, ge=0)  # cents


class CheckoutSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    order_id: str


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    creation_id: str
    order_type: OrderType
    status: OrderStatus
    amount_paid: Optional[int] = None
    is_gift: bool = False
    dedication_text: Optional[str] = None
    shipping: Optional[ShippingInfo] = None
    shipping_level_id: Optional[str] = None
    stripe_session_id: Optional[str] = None
    payment_reference: Optional[str] = None
    lulu_order_id: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    download_url: Optional[str] = None
    download_path: Optional[str] = None
    created_at: datetime


class OrderStatusView(BaseModel):
    """What the fulfillment poller reads."""
    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    download_url: Optional[str] = None
    download_path: Optional[str] = None
