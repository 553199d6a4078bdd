from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.errors import GatewayError, NotFoundError
from models.user import User
from routes.auth import get_current_user
from schemas.order import CheckoutRequest, CheckoutResponse, OrderListOut, OrderOut
from services.checkout_gateway import CheckoutGateway, get_checkout_gateway
from services.order_queries import list_orders
from services.order_store import OrderStore, get_order_store
from services.orders import begin_checkout, create_order

router = APIRouter(prefix="/users", tags=["orders"])


def _checkout(store: OrderStore, order, gateway: CheckoutGateway) -> CheckoutResponse:
    try:
        session = begin_checkout(store, order, gateway)
    except GatewayError as exc:
        # The order stays pending; hand its id back so the client can retry
        exc.order_id = order.id
        raise
    return CheckoutResponse(url=session.redirect_url, order_id=order.id, session_id=session.session_id)


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    data: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
):
    order = create_order(
        store,
        owner_id=current_user.owner_key,
        items=[item.model_dump() for item in data.items],
        shipping_address=data.shipping_address.model_dump(),
        customer_email=data.customer_email,
        total=data.total,
        metadata=data.metadata,
    )
    return _checkout(store, order, gateway)


@router.post("/orders/{order_id}/checkout", response_model=CheckoutResponse)
def retry_checkout(
    order_id: str,
    current_user: User = Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
):
    order = store.get_by_owner_and_id(current_user.owner_key, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return _checkout(store, order, gateway)


@router.get("/orders", response_model=OrderListOut)
def get_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
):
    result = list_orders(
        store,
        owner_id=current_user.owner_key,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )
    return OrderListOut(
        orders=[OrderOut.model_validate(o) for o in result.orders],
        page=result.page,
        limit=result.limit,
        total=result.total,
        total_pages=result.total_pages,
    )


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    store: OrderStore = Depends(get_order_store),
):
    # Scoped by partition key: another account's order is simply not found
    order = store.get_by_owner_and_id(current_user.owner_key, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order
