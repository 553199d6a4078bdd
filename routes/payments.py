from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request

from core.config import settings
from core.errors import NotFoundError
from schemas.payment import WebhookAck
from services import webhooks
from services.email import send_order_confirmation
from services.order_store import OrderStore, get_order_store
from services.orders import apply_completion_event

router = APIRouter(prefix="/payments", tags=["payments"])
log = structlog.get_logger(__name__)


async def raw_body(request: Request) -> bytes:
    """The untouched request bytes; the signature covers exactly these."""
    return await request.body()


@router.post("/webhook", response_model=WebhookAck)
def payment_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: Optional[str] = Header(default=None, alias=webhooks.SIGNATURE_HEADER),
    store: OrderStore = Depends(get_order_store),
):
    event = webhooks.verify(
        payload,
        stripe_signature,
        settings.STRIPE_WEBHOOK_SECRET,
        tolerance=settings.WEBHOOK_TOLERANCE_SECONDS or None,
    )
    log.info("webhook_received", event_id=event.id, event_type=event.type, order_id=event.correlation_id)

    try:
        order = apply_completion_event(store, event)
    except NotFoundError as exc:
        # Redelivery cannot make the order appear; acknowledge so the provider stops retrying
        log.error("webhook_order_not_found", event_id=event.id, order_id=event.correlation_id, error=str(exc))
        return WebhookAck()

    if order is not None:
        send_order_confirmation(order)
    return WebhookAck()
