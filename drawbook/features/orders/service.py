"""
Book order service.

Orders are created `pending` when a checkout session is opened and are only
ever advanced by external callbacks:
- payment webhook: pending -> payment_received
- print provider status callbacks: processing / printed / shipped / cancelled,
  forward only
- ebook pipeline completion (paid orders only): completed, with a download link
Clients only read.
"""

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, insert, update

from drawbook.core.config import settings
from drawbook.core.database import get_db_session, book_orders
from drawbook.core.errors import NotFoundError, ValidationError, WebhookSignatureError
from drawbook.core.logging import log_event
from drawbook.features.creations import storage
from drawbook.models.order import (
    BookCheckoutRequest,
    Order,
    OrderStatus,
    OrderStatusView,
    OrderType,
    ShippingInfo,
)

logger = logging.getLogger("drawbook")

LULU_SIGNATURE_HEADER = "Lulu-HMAC-SHA256"
LULU_STATUS_TOPIC = "PRINT_JOB_STATUS_CHANGED"

LULU_STATUS_MAP = {
    "CREATED": OrderStatus.PROCESSING,
    "UNPAID": OrderStatus.PROCESSING,
    "PAYMENT_IN_PROGRESS": OrderStatus.PROCESSING,
    "PRODUCTION_DELAYED": OrderStatus.PROCESSING,
    "PRODUCTION_READY": OrderStatus.PRINTED,
    "IN_PRODUCTION": OrderStatus.PRINTED,
    "SHIPPED": OrderStatus.SHIPPED,
    "REJECTED": OrderStatus.CANCELLED,
    "CANCELED": OrderStatus.CANCELLED,
    "ERROR": OrderStatus.CANCELLED,
}


def map_print_status(lulu_status: Optional[str]) -> OrderStatus:
    return LULU_STATUS_MAP.get((lulu_status or "").upper(), OrderStatus.PROCESSING)


# Printed orders only move forward along this sequence
PRINT_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PAYMENT_RECEIVED: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.PRINTED: 3,
    OrderStatus.SHIPPED: 4,
    OrderStatus.DELIVERED: 5,
}

EBOOK_DELIVERABLE_STATUSES = {OrderStatus.PAYMENT_RECEIVED, OrderStatus.PROCESSING, OrderStatus.COMPLETED}


def print_status_advances(current: OrderStatus, new: OrderStatus) -> bool:
    """
    Whether a print callback may move an order from ``current`` to ``new``.

    Callbacks can arrive out of order, so a stale one never moves an order
    backwards. Cancellation is accepted until the book has shipped; cancelled
    and delivered orders are final.
    """
    if current in (OrderStatus.CANCELLED, OrderStatus.DELIVERED):
        return False
    if new == OrderStatus.CANCELLED:
        return current != OrderStatus.SHIPPED
    return PRINT_STATUS_RANK.get(new, 0) > PRINT_STATUS_RANK.get(current, 0)


def _row_to_order(row) -> Order:
    shipping = None
    if row.shipping_address1:
        shipping = ShippingInfo(
            name=row.shipping_name or "",
            address1=row.shipping_address1 or "",
            address2=row.shipping_address2 or "",
            city=row.shipping_city or "",
            state=row.shipping_state or "",
            zip=row.shipping_zip or "",
            country=row.shipping_country or "US",
            phone=row.shipping_phone or "",
            email=row.shipping_email or "",
        )
    return Order(
        id=row.id,
        user_id=row.user_id,
        creation_id=row.creation_id,
        order_type=OrderType(row.order_type),
        status=OrderStatus(row.status),
        amount_paid=row.amount_paid,
        is_gift=row.is_gift,
        dedication_text=row.dedication_text,
        shipping=shipping,
        shipping_level_id=row.shipping_level_id,
        stripe_session_id=row.stripe_session_id,
        payment_reference=row.payment_reference,
        lulu_order_id=row.lulu_order_id,
        tracking_number=row.tracking_number,
        tracking_url=row.tracking_url,
        download_url=row.download_url,
        download_path=row.download_path,
        created_at=row.created_at,
    )


def create_pending_order(
    request: BookCheckoutRequest,
    stripe_session_id: str,
    amount: int,
    order_id: Optional[str] = None,
) -> Order:
    order_id = order_id or str(uuid.uuid4())
    shipping = request.shipping if request.product_type.is_physical else None
    values = dict(
        id=order_id,
        user_id=request.user_id,
        creation_id=request.creation_id,
        order_type=request.product_type.value,
        status=OrderStatus.PENDING.value,
        amount_paid=amount,
        is_gift=request.is_gift,
        dedication_text=request.dedication_text,
        cover_color_id=request.cover_color_id,
        text_color_id=request.text_color_id,
        customer_email=request.user_email,
        stripe_session_id=stripe_session_id,
        created_at=datetime.now(timezone.utc),
    )
    if shipping is not None:
        values.update(
            shipping_name=shipping.name,
            shipping_address1=shipping.address1,
            shipping_address2=shipping.address2 or None,
            shipping_city=shipping.city,
            shipping_state=shipping.state,
            shipping_zip=shipping.zip,
            shipping_country=shipping.country,
            shipping_phone=shipping.phone,
            shipping_email=shipping.email,
            shipping_level_id=(request.shipping_level_id.value if request.shipping_level_id else "MAIL"),
            shipping_cost=request.shipping_cost,
            book_cost=request.book_cost,
        )

    with get_db_session() as session:
        session.execute(insert(book_orders).values(**values))
        row = session.execute(select(book_orders).where(book_orders.c.id == order_id)).one()

    log_event("info", "order.created", user_id=request.user_id, order_id=order_id, creation_id=request.creation_id)
    return _row_to_order(row)


def _get_owned_row(session, user_id: str, **filters):
    query = select(book_orders).where(book_orders.c.user_id == user_id)
    for column, value in filters.items():
        query = query.where(book_orders.c[column] == value)
    row = session.execute(query).first()
    if row is None:
        raise NotFoundError("Order not found")
    return row


def get_order(user_id: str, order_id: str) -> Order:
    with get_db_session() as session:
        return _row_to_order(_get_owned_row(session, user_id, id=order_id))


def _ebook_download_url(download_path: str, ttl_seconds: Optional[int] = None) -> str:
    ttl = ttl_seconds if ttl_seconds is not None else settings.EBOOK_DOWNLOAD_TTL_SECONDS
    url, _ = storage.sign_url(storage.EBOOKS_BUCKET, download_path, ttl_seconds=ttl)
    return url


def get_order_status(user_id: str, order_id: str) -> OrderStatusView:
    """The read the fulfillment poller issues every few seconds. Download links are re-signed per read."""
    with get_db_session() as session:
        row = _get_owned_row(session, user_id, id=order_id)
    download_url = _ebook_download_url(row.download_path) if row.download_path else row.download_url
    return OrderStatusView(status=OrderStatus(row.status), download_url=download_url, download_path=row.download_path)


def get_order_by_session(user_id: str, session_id: str) -> Order:
    """Order lookup for the payment success page, keyed by checkout session id."""
    with get_db_session() as session:
        return _row_to_order(_get_owned_row(session, user_id, stripe_session_id=session_id))


def list_orders(user_id: str, limit: int = 50) -> List[Order]:
    with get_db_session() as session:
        rows = session.execute(
            select(book_orders)
            .where(book_orders.c.user_id == user_id)
            .order_by(book_orders.c.created_at.desc())
            .limit(limit)
        ).all()
    return [_row_to_order(row) for row in rows]


def mark_payment_received(
    stripe_session_id: str,
    payment_reference: Optional[str] = None,
    amount_total: Optional[int] = None,
) -> Optional[Order]:
    """
    Confirm payment for the order opened with this checkout session.

    Only a pending order moves; replays and late events leave later
    statuses untouched. Returns None when no order matches.
    """
    values: Dict[str, object] = {
        "status": OrderStatus.PAYMENT_RECEIVED.value,
        "updated_at": datetime.now(timezone.utc),
    }
    if payment_reference:
        values["payment_reference"] = payment_reference
    if amount_total is not None:
        values["amount_paid"] = amount_total

    with get_db_session() as session:
        result = session.execute(
            update(book_orders)
            .where(book_orders.c.stripe_session_id == stripe_session_id)
            .where(book_orders.c.status == OrderStatus.PENDING.value)
            .values(**values)
        )
        row = session.execute(
            select(book_orders).where(book_orders.c.stripe_session_id == stripe_session_id)
        ).first()

    if row is None:
        logger.warning("order.payment_unmatched", extra={"event_type": "checkout.session.completed"})
        return None
    if result.rowcount == 1:
        log_event("info", "order.payment_received", user_id=row.user_id, order_id=row.id)
    return _row_to_order(row)


def verify_print_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    secret = secret or settings.LULU_API_SECRET
    if not secret:
        raise WebhookSignatureError("Print webhook secret not configured")
    if not signature:
        raise WebhookSignatureError("Missing signature")
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise WebhookSignatureError("Invalid signature")


def apply_print_status(headers: Dict[str, str], body: bytes) -> Optional[Order]:
    """
    Apply a print-job status callback.

    The order is matched by print job id, or by the line item external_id
    (our order id) for the first callback after submission. Returns None for
    ignored topics.
    """
    verify_print_signature(body, headers.get(LULU_SIGNATURE_HEADER) or headers.get(LULU_SIGNATURE_HEADER.lower()))
    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Malformed print webhook payload")

    if payload.get("topic") != LULU_STATUS_TOPIC:
        return None

    job = payload.get("data") or {}
    job_id = str(job.get("id")) if job.get("id") is not None else None
    status = map_print_status((job.get("status") or {}).get("name"))

    tracking_number = tracking_url = None
    external_id = None
    for line_item in job.get("line_items") or []:
        external_id = external_id or line_item.get("external_id")
        if line_item.get("tracking_id"):
            tracking_number = line_item["tracking_id"]
        if line_item.get("tracking_urls"):
            tracking_url = line_item["tracking_urls"][0]

    values: Dict[str, object] = {"updated_at": datetime.now(timezone.utc)}
    if job_id:
        values["lulu_order_id"] = job_id
    if tracking_number:
        values["tracking_number"] = tracking_number
    if tracking_url:
        values["tracking_url"] = tracking_url

    with get_db_session() as session:
        row = None
        if job_id:
            row = session.execute(select(book_orders).where(book_orders.c.lulu_order_id == job_id)).first()
        if row is None and external_id:
            row = session.execute(select(book_orders).where(book_orders.c.id == external_id)).first()
        if row is None:
            raise NotFoundError("No order for print job")
        moved = print_status_advances(OrderStatus(row.status), status)
        if moved:
            values["status"] = status.value
        session.execute(update(book_orders).where(book_orders.c.id == row.id).values(**values))
        row = session.execute(select(book_orders).where(book_orders.c.id == row.id)).one()

    if moved:
        log_event("info", "order.print_status", user_id=row.user_id, order_id=row.id, extra={"status": status.value})
    else:
        log_event(
            "info",
            "order.print_status_stale",
            user_id=row.user_id,
            order_id=row.id,
            extra={"status": status.value, "current": row.status},
        )
    return _row_to_order(row)


def record_print_job(order_id: str, lulu_order_id: str) -> Order:
    """Attach the print job created by the fulfillment pipeline to a paid order."""
    with get_db_session() as session:
        row = session.execute(select(book_orders).where(book_orders.c.id == order_id)).first()
        if row is None:
            raise NotFoundError("Order not found")
        if not OrderType(row.order_type).is_physical:
            raise ValidationError("Ebook orders have no print job")
        if OrderStatus(row.status) == OrderStatus.PENDING:
            raise ValidationError("Order has not been paid")
        values: Dict[str, object] = {"lulu_order_id": lulu_order_id, "updated_at": datetime.now(timezone.utc)}
        if print_status_advances(OrderStatus(row.status), OrderStatus.PROCESSING):
            values["status"] = OrderStatus.PROCESSING.value
        session.execute(update(book_orders).where(book_orders.c.id == order_id).values(**values))
        row = session.execute(select(book_orders).where(book_orders.c.id == order_id)).one()

    log_event("info", "order.print_job_recorded", user_id=row.user_id, order_id=order_id)
    return _row_to_order(row)


def record_ebook_delivery(order_id: str, download_path: str, ttl_seconds: Optional[int] = None) -> Order:
    """Ebook pipeline finished: store the PDF path and a signed download link."""
    if not download_path:
        raise ValidationError("download_path is required")
    download_url = _ebook_download_url(download_path, ttl_seconds)

    with get_db_session() as session:
        row = session.execute(select(book_orders).where(book_orders.c.id == order_id)).first()
        if row is None:
            raise NotFoundError("Order not found")
        if row.order_type != OrderType.EBOOK.value:
            raise ValidationError("Only ebook orders have a download")
        if OrderStatus(row.status) not in EBOOK_DELIVERABLE_STATUSES:
            raise ValidationError("Order has not been paid")
        session.execute(
            update(book_orders)
            .where(book_orders.c.id == order_id)
            .values(
                download_path=download_path,
                download_url=download_url,
                status=OrderStatus.COMPLETED.value,
                updated_at=datetime.now(timezone.utc),
            )
        )
        row = session.execute(select(book_orders).where(book_orders.c.id == order_id)).one()

    log_event("info", "order.ebook_delivered", user_id=row.user_id, order_id=order_id)
    return _row_to_order(row)
