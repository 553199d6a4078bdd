"""Verification of signed payment-provider callbacks.

Stripe signs ``"<timestamp>." + body`` and sends the result in the
``Stripe-Signature`` header. Verification must run over the exact bytes
received; re-serialising a parsed body changes whitespace and key order and
breaks the signature.
"""
import json
from typing import Any, Mapping, Optional

import stripe
import structlog

from core.errors import AuthenticationError, MalformedEventError
from schemas.payment import CheckoutEvent

log = structlog.get_logger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"
DEFAULT_TOLERANCE = stripe.Webhook.DEFAULT_TOLERANCE


def verify(raw_payload: bytes, signature_header: Optional[str], secret: str,
           tolerance: Optional[int] = DEFAULT_TOLERANCE) -> CheckoutEvent:
    """Check the signature over ``raw_payload`` and return the parsed event.

    ``tolerance=None`` disables the timestamp age check.
    """
    if not secret:
        raise AuthenticationError("Webhook secret is not configured")
    if not signature_header:
        raise AuthenticationError("Missing signature header")

    try:
        event = stripe.Webhook.construct_event(raw_payload, signature_header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as exc:
        log.warning("webhook_signature_invalid", error=str(exc))
        raise AuthenticationError("Invalid signature") from exc
    except ValueError as exc:
        raise MalformedEventError("Event body is not valid JSON") from exc
    except (AttributeError, TypeError) as exc:
        # construct_event only builds events from JSON objects
        raise MalformedEventError("Event body is not an object") from exc

    return _event_from_body(event)


def parse_event(raw_payload: bytes) -> CheckoutEvent:
    """Parse an already-trusted event body."""
    try:
        body = json.loads(raw_payload)
    except ValueError as exc:
        raise MalformedEventError("Event body is not valid JSON") from exc
    return _event_from_body(body)


def _event_from_body(body: Any) -> CheckoutEvent:
    if not isinstance(body, Mapping) or not isinstance(body.get("type"), str):
        raise MalformedEventError("Event body has no type")

    data = body.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        obj = {}
    return CheckoutEvent(
        id=_str_or_none(body.get("id")),
        type=body["type"],
        correlation_id=_str_or_none(obj.get("client_reference_id")),
        session_id=_str_or_none(obj.get("id")),
        raw=dict(body),
    )


def _str_or_none(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None
