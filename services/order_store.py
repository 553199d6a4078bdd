from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog
from fastapi import Depends
from sqlalchemy import func, inspect, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.db import get_db
from core.errors import ConflictError, NotFoundError, StaleOrderError
from models.order import Order

log = structlog.get_logger(__name__)

# Everything except the key, the version and the timestamps
REPLACEABLE_FIELDS = (
    "items",
    "shipping_address",
    "status",
    "total",
    "currency",
    "external_session_id",
    "customer_email",
    "metadata_",
    "order_ref",
)


@dataclass
class OrderFilter:
    owner_id: Optional[str] = None
    status: Optional[str] = None
    search: Optional[str] = None
    # Admin listings also match the search term against the customer email
    search_email: bool = False


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class OrderStore:
    """Persistence for order documents, partitioned by ``owner_id``.

    ``get_by_owner_and_id`` is the primary-key point lookup. ``get_by_id`` does
    not know the partition and scans across owners; it is meant for low-volume
    administrative and webhook paths only.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, order: Order) -> Order:
        self.db.add(order)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"Order {order.id} already exists") from exc
        log.debug("order_stored", order_id=order.id, owner_id=order.owner_id)
        return order

    def get_by_owner_and_id(self, owner_id: str, order_id: str) -> Optional[Order]:
        return self.db.get(Order, (owner_id, order_id), populate_existing=True)

    def get_by_id(self, order_id: str) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        return self.db.execute(stmt).scalars().first()

    def replace(self, owner_id: str, order_id: str, order: Order) -> Order:
        """Write ``order``'s current fields over the stored document.

        The UPDATE is keyed on partition, id and the version the order was
        read at. Raises NotFoundError when nothing is stored under that key
        and StaleOrderError when another writer got there first.
        """
        if order.owner_id != owner_id or order.id != order_id:
            raise NotFoundError(f"Order {order_id} not found")
        if not inspect(order).persistent:
            order = self._adopt(owner_id, order_id, order)
        elif not self.db.is_modified(order):
            if self.get_by_owner_and_id(owner_id, order_id) is None:
                raise NotFoundError(f"Order {order_id} not found")
            return order
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            if self.get_by_owner_and_id(owner_id, order_id) is None:
                raise NotFoundError(f"Order {order_id} not found") from exc
            raise StaleOrderError(f"Order {order_id} was modified concurrently") from exc
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"Order {order_id} conflicts with an existing order") from exc
        return order

    def _adopt(self, owner_id: str, order_id: str, incoming: Order) -> Order:
        """Copy a detached or newly built order onto the stored row."""
        state = inspect(incoming)
        if state.pending:
            self.db.expunge(incoming)
        stored = self.get_by_owner_and_id(owner_id, order_id)
        if stored is None:
            raise NotFoundError(f"Order {order_id} not found")
        if incoming.version is not None and incoming.version != stored.version:
            raise StaleOrderError(f"Order {order_id} was modified concurrently")
        for field in REPLACEABLE_FIELDS:
            setattr(stored, field, getattr(incoming, field))
        return stored

    def query(self, criteria: OrderFilter, offset: int = 0, limit: int = 20) -> Tuple[List[Order], int]:
        conditions = []
        if criteria.owner_id is not None:
            conditions.append(Order.owner_id == criteria.owner_id)
        if criteria.status:
            conditions.append(Order.status == criteria.status)
        if criteria.search:
            pattern = f"%{_escape_like(criteria.search.lower())}%"
            matches = [func.lower(Order.order_ref).like(pattern, escape="\\")]
            if criteria.search_email:
                matches.append(func.lower(Order.customer_email).like(pattern, escape="\\"))
            conditions.append(or_(*matches))

        total = self.db.execute(select(func.count()).select_from(Order).where(*conditions)).scalar_one()
        stmt = (
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all()), total


def get_order_store(db: Session = Depends(get_db)) -> OrderStore:
    return OrderStore(db)
