"""
Book order API.

User reads:
- GET  /api/orders: the caller's orders
- GET  /api/orders/{id}/status: what the fulfillment poller reads
- GET  /api/orders/by-session/{session_id}: success page lookup

Callbacks:
- POST /api/orders/print-webhook: print provider status (HMAC signed)
- POST /api/orders/{id}/ebook-ready: ebook pipeline finished (service key)
- POST /api/orders/{id}/print-job: print job submitted (service key)
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from drawbook.core.auth import get_current_user_id
from drawbook.core.service_auth import ServiceActor, require_service_key
from drawbook.features.orders import service as orders
from drawbook.models.order import Order, OrderStatusView

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderListResponse(BaseModel):
    orders: List[Order]


class EbookReadyRequest(BaseModel):
    download_path: str
    ttl_seconds: Optional[int] = None


class PrintJobRequest(BaseModel):
    lulu_order_id: str


@router.get("", response_model=OrderListResponse)
async def list_orders(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
):
    return {"orders": orders.list_orders(user_id, limit=limit)}


@router.get("/by-session/{session_id}", response_model=Order)
async def get_order_by_session(session_id: str, user_id: str = Depends(get_current_user_id)):
    return orders.get_order_by_session(user_id, session_id)


@router.get("/{order_id}/status", response_model=OrderStatusView)
async def get_order_status(order_id: str, user_id: str = Depends(get_current_user_id)):
    return orders.get_order_status(user_id, order_id)


@router.post("/print-webhook")
async def print_webhook(req: Request):
    body = await req.body()
    order = orders.apply_print_status(dict(req.headers), body)
    if order is None:
        return {"received": True, "ignored": True}
    return {"received": True, "order_id": order.id, "status": order.status}


@router.post("/{order_id}/ebook-ready", response_model=Order)
async def ebook_ready(
    order_id: str,
    body: EbookReadyRequest,
    actor: ServiceActor = Depends(require_service_key),
):
    return orders.record_ebook_delivery(order_id, body.download_path, body.ttl_seconds)


@router.post("/{order_id}/print-job", response_model=Order)
async def print_job(
    order_id: str,
    body: PrintJobRequest,
    actor: ServiceActor = Depends(require_service_key),
):
    return orders.record_print_job(order_id, body.lulu_order_id)
