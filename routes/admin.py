from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from core.errors import NotFoundError
from models.user import User
from routes.auth import require_admin
from schemas.order import AdminOrderOut, OrderListOut, OrderOut, StatusUpdate
from schemas.users import UserPublic
from services.order_queries import list_orders
from services.order_store import OrderStore, get_order_store
from services.orders import update_order_status

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])
log = structlog.get_logger(__name__)


def _owner_profile(db: Session, owner_id: str) -> Optional[UserPublic]:
    if not owner_id.isdigit():
        return None
    user = db.get(User, int(owner_id))
    return UserPublic.model_validate(user) if user else None


@router.get("/orders", response_model=OrderListOut)
def get_all_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: OrderStore = Depends(get_order_store),
):
    result = list_orders(
        store,
        owner_id=None,
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


@router.get("/orders/{order_id}", response_model=AdminOrderOut)
def get_order_by_id(order_id: str, store: OrderStore = Depends(get_order_store), db: Session = Depends(get_db)):
    order = store.get_by_id(order_id)
    if not order:
        raise NotFoundError("Order not found")
    return AdminOrderOut(order=OrderOut.model_validate(order), user=_owner_profile(db, order.owner_id))


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
def set_order_status(order_id: str, data: StatusUpdate, store: OrderStore = Depends(get_order_store)):
    return update_order_status(store, order_id, data.status)
