import math
from dataclasses import dataclass, field
from typing import List, Optional

from core.errors import ValidationError
from models.order import Order, OrderStatus
from services.order_store import OrderFilter, OrderStore

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class OrderPage:
    orders: List[Order] = field(default_factory=list)
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def list_orders(
    store: OrderStore,
    owner_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> OrderPage:
    """Newest-first page of orders.

    ``owner_id=None`` is the unscoped administrative listing; there the search
    term also matches the customer email.
    """
    errors = []
    if page < 1:
        errors.append("page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        errors.append(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if status and status not in OrderStatus.values():
        errors.append(f"Invalid status '{status}'")
    if errors:
        raise ValidationError(errors)

    criteria = OrderFilter(
        owner_id=owner_id,
        status=status or None,
        search=(search or "").strip() or None,
        search_email=owner_id is None,
    )
    orders, total = store.query(criteria, offset=(page - 1) * limit, limit=limit)
    return OrderPage(orders=orders, page=page, limit=limit, total=total)
