import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Integer, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def values(cls) -> list[str]:
        return [s.value for s in cls]


def new_order_id() -> str:
    return f"order_{uuid.uuid4().hex}"


class Order(Base):
    """One checkout attempt, partitioned by owner.

    The primary key leads with ``owner_id`` so point lookups always carry the
    partition key. ``version`` is bumped on every UPDATE and checked by it.
    """

    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_owner_created", "owner_id", "created_at"),
    )

    owner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True, unique=True, default=new_order_id)
    items: Mapped[list] = mapped_column(JSON, default=list)
    shipping_address: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(30), default=OrderStatus.PENDING.value, index=True)
    total: Mapped[int] = mapped_column(Integer, default=0)  # minor units
    currency: Mapped[str] = mapped_column(String(3), default="gbp")
    external_session_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    customer_email: Mapped[str] = mapped_column(String(255))
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    order_ref: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Order {self.id} owner={self.owner_id} status={self.status}>"
