from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


CHECKOUT_COMPLETED = "checkout.session.completed"


class CheckoutSession(BaseModel):
    session_id: str
    redirect_url: str


class CheckoutEvent(BaseModel):
    """A verified provider event. ``correlation_id`` is the order id handed to the provider."""

    id: Optional[str] = None
    type: str
    correlation_id: Optional[str] = None
    session_id: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_completion(self) -> bool:
        return self.type == CHECKOUT_COMPLETED


class WebhookAck(BaseModel):
    received: bool = True
