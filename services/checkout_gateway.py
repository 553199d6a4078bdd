import json
from typing import Any, Dict, List, Optional, Protocol

import requests
import structlog

from core.config import settings
from core.errors import GatewayError
from schemas.payment import CheckoutSession

log = structlog.get_logger(__name__)

DEFAULT_DESCRIPTION = "No description provided"

# One connection pool for every request handled by this process
_http = requests.Session()


class CheckoutGateway(Protocol):
    def create_session(
        self,
        line_items: List[Dict[str, Any]],
        customer_email: str,
        success_url: str,
        cancel_url: str,
        correlation_id: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        ...


def _flatten(prefix: str, value: Any, out: Dict[str, Any]) -> None:
    """Encode nested data the way Stripe's form API expects (``a[b][0][c]=v``)."""
    if isinstance(value, dict):
        for key, inner in value.items():
            _flatten(f"{prefix}[{key}]", inner, out)
    elif isinstance(value, (list, tuple)):
        for index, inner in enumerate(value):
            _flatten(f"{prefix}[{index}]", inner, out)
    elif value is not None:
        out[prefix] = value


def to_stripe_line_items(items: List[Dict[str, Any]], currency: str) -> List[Dict[str, Any]]:
    line_items = []
    for item in items:
        description = (item.get("description") or "").strip() or DEFAULT_DESCRIPTION
        line_items.append({
            "price_data": {
                "currency": currency,
                "unit_amount": int(item["unit_price"]),
                "product_data": {
                    "name": item["name"],
                    "description": description,
                    "images": list(item.get("images") or []),
                },
            },
            "quantity": int(item["quantity"]),
        })
    return line_items


class StripeCheckoutGateway:
    """Creates hosted Stripe Checkout sessions over the REST API."""

    def __init__(self, secret_key: str, base_url: str = "https://api.stripe.com", timeout: float = 20,
                 currency: str = "gbp", session: Optional[requests.Session] = None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.currency = currency
        self.http = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def create_session(self, line_items, customer_email, success_url, cancel_url, correlation_id, metadata=None):
        payload: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types[0]": "card",
            "customer_email": customer_email,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": correlation_id,
        }
        _flatten("line_items", to_stripe_line_items(line_items, self.currency), payload)
        _flatten("metadata", metadata or {}, payload)

        try:
            resp = self.http.post(
                f"{self.base_url}/v1/checkout/sessions",
                data=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except requests.Timeout as exc:
            log.warning("checkout_session_timeout", correlation_id=correlation_id, timeout=self.timeout)
            raise GatewayError("Payment provider timed out", order_id=correlation_id) from exc
        except requests.RequestException as exc:
            log.warning("checkout_session_failed", correlation_id=correlation_id, error=str(exc))
            raise GatewayError("Unable to create checkout session", order_id=correlation_id) from exc
        except ValueError as exc:
            raise GatewayError("Payment provider returned an unreadable response", order_id=correlation_id) from exc

        session_id = body.get("id")
        redirect_url = body.get("url")
        if not session_id or not redirect_url:
            raise GatewayError("Missing session details from provider", order_id=correlation_id)
        log.info("checkout_session_created", correlation_id=correlation_id, session_id=session_id)
        return CheckoutSession(session_id=session_id, redirect_url=redirect_url)


def address_metadata(address: Dict[str, Any]) -> str:
    return json.dumps(address, sort_keys=True)


def get_checkout_gateway() -> CheckoutGateway:
    """FastAPI dependency; overridden in tests."""
    return StripeCheckoutGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        base_url=settings.STRIPE_API_BASE,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        currency=settings.CHECKOUT_CURRENCY,
        session=_http,
    )
