from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from models.order import OrderStatus
from schemas.users import UserPublic


# Request records are typed but deliberately unconstrained: the order
# lifecycle validates them as a whole and reports every violation at once.

class OrderItemIn(BaseModel):
    product_id: str = ""
    name: str = ""
    description: Optional[str] = None
    quantity: int = 0
    unit_price: int = 0  # minor units
    images: List[str] = Field(default_factory=list)


class AddressIn(BaseModel):
    street: str = ""
    city: str = ""
    post_code: str = ""
    country: str = ""


class CheckoutRequest(BaseModel):
    items: List[OrderItemIn] = Field(default_factory=list)
    shipping_address: AddressIn = Field(default_factory=AddressIn)
    customer_email: str = ""
    total: Optional[int] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class CheckoutResponse(BaseModel):
    url: str
    order_id: str
    session_id: str


class StatusUpdate(BaseModel):
    status: str


class OrderItemOut(BaseModel):
    product_id: str
    name: str
    description: Optional[str] = None
    quantity: int
    unit_price: int
    images: List[str] = Field(default_factory=list)


class OrderOut(BaseModel):
    id: str
    owner_id: str
    items: List[OrderItemOut]
    shipping_address: AddressIn
    status: OrderStatus
    total: int
    currency: str
    external_session_id: Optional[str] = None
    customer_email: str
    metadata: Dict[str, str] = Field(default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata"))
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    page: int
    limit: int
    total: int
    total_pages: int


class AdminOrderOut(BaseModel):
    order: OrderOut
    user: Optional[UserPublic] = None
