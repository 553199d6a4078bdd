"""Order lifecycle: creation, checkout hand-off and status transitions.

Every write path is a single read-modify-write against the order store with
no locks held. Correctness under duplicate or concurrent delivery comes from
two things: transitions are idempotent (re-applying one is a no-op) and
``OrderStore.replace`` refuses to overwrite a version it did not read. On a
version conflict the order is re-read and the mutation re-evaluated.
"""
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import structlog
from email_validator import EmailNotValidError, validate_email

from core.config import settings
from core.errors import ConflictError, InvalidStatusTransition, NotFoundError, StaleOrderError, ValidationError
from models.order import Order, OrderStatus, new_order_id
from schemas.payment import CheckoutEvent, CheckoutSession
from services.checkout_gateway import CheckoutGateway, address_metadata
from services.order_store import OrderStore

log = structlog.get_logger(__name__)

# Forward sequence; CANCELLED branches off any non-terminal status.
PROGRESSION = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]
TERMINAL = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if current in TERMINAL:
        return False
    if new == OrderStatus.CANCELLED:
        return True
    return PROGRESSION.index(new) > PROGRESSION.index(current)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_items(items: Any, errors: List[str]) -> None:
    if not isinstance(items, (list, tuple)) or not items:
        errors.append("At least one item is required")
        return
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            errors.append(f"items[{index}] must be an object")
            continue
        if not str(item.get("product_id") or "").strip():
            errors.append(f"items[{index}].product_id is required")
        if not str(item.get("name") or "").strip():
            errors.append(f"items[{index}].name is required")
        quantity = item.get("quantity")
        if not _is_int(quantity) or quantity <= 0:
            errors.append(f"items[{index}].quantity must be a positive integer")
        price = item.get("unit_price")
        if not _is_int(price) or price < 0:
            errors.append(f"items[{index}].unit_price must be a non-negative integer")


def _validate_address(address: Any, errors: List[str]) -> None:
    if not isinstance(address, Mapping):
        errors.append("Shipping address is required")
        return
    for field in ("street", "city", "country"):
        if not str(address.get(field) or "").strip():
            errors.append(f"shipping_address.{field} is required")


def _validate_email(email: Any, errors: List[str]) -> None:
    if not isinstance(email, str) or not email.strip():
        errors.append("Customer email is required")
        return
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as exc:
        errors.append(f"Customer email is invalid: {exc}")


def _normalise_item(item: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "product_id": str(item["product_id"]).strip(),
        "name": str(item["name"]).strip(),
        "description": item.get("description"),
        "quantity": item["quantity"],
        "unit_price": item["unit_price"],
        "images": list(item.get("images") or []),
    }


def items_total(items: Sequence[Mapping[str, Any]]) -> int:
    return sum(item["unit_price"] * item["quantity"] for item in items)


def create_order(
    store: OrderStore,
    owner_id: str,
    items: Sequence[Mapping[str, Any]],
    shipping_address: Mapping[str, Any],
    customer_email: str,
    total: Optional[int] = None,
    metadata: Optional[Mapping[str, str]] = None,
    currency: Optional[str] = None,
) -> Order:
    """Validate a cart and persist it as a pending order without a session."""
    errors: List[str] = []
    if not str(owner_id or "").strip():
        errors.append("Owner id is required")
    _validate_items(items, errors)
    _validate_address(shipping_address, errors)
    _validate_email(customer_email, errors)
    if total is not None and (not _is_int(total) or total < 0):
        errors.append("Total must be a non-negative integer amount in minor units")
    metadata = dict(metadata or {})
    if any(not isinstance(k, str) or not isinstance(v, str) for k, v in metadata.items()):
        errors.append("Metadata keys and values must be strings")
    if errors:
        raise ValidationError(errors)

    clean_items = [_normalise_item(item) for item in items]
    metadata.setdefault("order_ref", f"ORD-{int(time.time() * 1000)}")
    order = Order(
        id=new_order_id(),
        owner_id=str(owner_id),
        items=clean_items,
        shipping_address=dict(shipping_address),
        status=OrderStatus.PENDING.value,
        total=items_total(clean_items) if total is None else total,
        currency=(currency or settings.CHECKOUT_CURRENCY).lower(),
        external_session_id=None,
        customer_email=customer_email.strip(),
        metadata_=metadata,
        order_ref=metadata["order_ref"],
    )
    store.create(order)
    log.info("order_created", order_id=order.id, owner_id=order.owner_id, total=order.total)
    return order


def _write(store: OrderStore, load: Callable[[], Optional[Order]], mutate: Callable[[Order], bool],
           order_id: str) -> tuple[Order, bool]:
    """Load, mutate and replace an order, re-reading on version conflicts.

    ``mutate`` returns False when the order already has the desired state;
    nothing is written then. Returns the order and whether it was written.
    """
    attempts = max(1, settings.ORDER_WRITE_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        order = load()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not mutate(order):
            return order, False
        try:
            return store.replace(order.owner_id, order.id, order), True
        except StaleOrderError:
            log.warning("order_write_conflict", order_id=order_id, attempt=attempt)
            if attempt == attempts:
                raise
    raise StaleOrderError(f"Order {order_id} was modified concurrently")


def begin_checkout(
    store: OrderStore,
    order: Order,
    gateway: CheckoutGateway,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutSession:
    """Open a hosted checkout session for a pending order and remember its id.

    A GatewayError leaves the order pending without a session so the call can
    simply be repeated.
    """
    if order.status != OrderStatus.PENDING.value:
        raise ConflictError(f"Order {order.id} is {order.status}, checkout is only possible for pending orders")
    if order.external_session_id:
        raise ConflictError(f"Checkout already started for order {order.id}")

    success = success_url or f"{settings.CHECKOUT_SUCCESS_URL}?session_id={{CHECKOUT_SESSION_ID}}"
    metadata = dict(order.metadata_ or {})
    metadata["address"] = address_metadata(order.shipping_address)
    session = gateway.create_session(
        line_items=order.items,
        customer_email=order.customer_email,
        success_url=success,
        cancel_url=cancel_url or settings.CHECKOUT_CANCEL_URL,
        correlation_id=order.id,
        metadata=metadata,
    )

    def attach(current: Order) -> bool:
        if current.external_session_id == session.session_id:
            return False
        if current.external_session_id:
            raise ConflictError(f"Order {current.id} is already attached to another checkout session")
        current.external_session_id = session.session_id
        return True

    owner_id, order_id = order.owner_id, order.id
    _write(store, lambda: store.get_by_owner_and_id(owner_id, order_id), attach, order_id)
    log.info("checkout_started", order_id=order_id, session_id=session.session_id)
    return session


def apply_completion_event(store: OrderStore, event: CheckoutEvent) -> Optional[Order]:
    """Confirm the order named by a verified completion event.

    Returns the order only when this call moved it to ``confirmed``;
    duplicates, other event types and orders already past ``pending`` return
    None. Raises NotFoundError when no order has the correlation id.
    """
    if not event.is_completion:
        log.info("webhook_event_ignored", event_id=event.id, event_type=event.type)
        return None
    if not event.correlation_id:
        raise NotFoundError(f"Event {event.id} carries no order reference")

    def confirm(current: Order) -> bool:
        if current.status != OrderStatus.PENDING.value:
            if current.status == OrderStatus.CANCELLED.value:
                log.warning("payment_completed_for_cancelled_order", order_id=current.id, event_id=event.id)
            return False
        current.status = OrderStatus.CONFIRMED.value
        return True

    order, written = _write(store, lambda: store.get_by_id(event.correlation_id), confirm, event.correlation_id)
    if written:
        log.info("order_confirmed", order_id=order.id, owner_id=order.owner_id, event_id=event.id)
        return order
    log.info("order_confirmation_skipped", order_id=order.id, status=order.status, event_id=event.id)
    return None


def update_order_status(store: OrderStore, order_id: str, new_status: str) -> Order:
    """Administrative status change. Forward-only; terminal statuses are final."""
    if new_status not in OrderStatus.values():
        raise ValidationError([f"Invalid status '{new_status}'. Allowed: {', '.join(OrderStatus.values())}"])
    target = OrderStatus(new_status)

    def advance(current: Order) -> bool:
        if not can_transition(OrderStatus(current.status), target):
            raise InvalidStatusTransition(current.status, target.value)
        current.status = target.value
        return True

    order, _ = _write(store, lambda: store.get_by_id(order_id), advance, order_id)
    log.info("order_status_updated", order_id=order.id, status=order.status)
    return order
