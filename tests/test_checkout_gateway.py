from unittest.mock import Mock, patch

import pytest
import requests

from core.errors import GatewayError
from services.checkout_gateway import StripeCheckoutGateway, get_checkout_gateway, to_stripe_line_items

ITEMS = [
    {"product_id": "p1", "name": "Mug", "description": "Stoneware", "quantity": 2, "unit_price": 1500,
     "images": ["https://img.example.com/mug.png"]},
    {"product_id": "p2", "name": "Poster", "description": "  ", "quantity": 1, "unit_price": 1999},
]


def _response(status_code=200, body=None):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    else:
        resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def http():
    return Mock(spec=requests.Session)


@pytest.fixture
def stripe(http):
    return StripeCheckoutGateway("sk_test_123", base_url="https://stripe.test", timeout=5, currency="gbp",
                                 session=http)


def _create(gateway):
    return gateway.create_session(
        line_items=ITEMS,
        customer_email="buyer@example.com",
        success_url="https://shop.example.com/ok?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://shop.example.com/cancel",
        correlation_id="order_1",
        metadata={"order_ref": "ORD-1"},
    )


class TestStripeCheckoutGateway:
    """Hosted checkout session creation"""

    def test_creates_session(self, stripe, http):
        http.post.return_value = _response(body={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"})

        session = _create(stripe)

        assert session.session_id == "cs_test_1"
        assert session.redirect_url == "https://checkout.stripe.com/c/cs_test_1"

        args, kwargs = http.post.call_args
        assert args[0] == "https://stripe.test/v1/checkout/sessions"
        assert kwargs["timeout"] == 5
        assert kwargs["headers"]["Authorization"] == "Bearer sk_test_123"
        data = kwargs["data"]
        assert data["mode"] == "payment"
        assert data["client_reference_id"] == "order_1"
        assert data["customer_email"] == "buyer@example.com"
        assert data["line_items[0][price_data][currency]"] == "gbp"
        assert data["line_items[0][price_data][unit_amount]"] == 1500
        assert data["line_items[0][quantity]"] == 2
        assert data["line_items[0][price_data][product_data][images][0]"] == "https://img.example.com/mug.png"
        assert data["line_items[1][price_data][product_data][description]"] == "No description provided"
        assert data["metadata[order_ref]"] == "ORD-1"

    def test_timeout_raises_gateway_error(self, stripe, http):
        http.post.side_effect = requests.Timeout("read timed out")

        with pytest.raises(GatewayError) as exc_info:
            _create(stripe)
        assert exc_info.value.order_id == "order_1"

    def test_connection_error(self, stripe, http):
        http.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(GatewayError):
            _create(stripe)

    def test_provider_error_status(self, stripe, http):
        http.post.return_value = _response(status_code=402, body={"error": {"message": "card declined"}})

        with pytest.raises(GatewayError):
            _create(stripe)

    def test_missing_url(self, stripe, http):
        http.post.return_value = _response(body={"id": "cs_test_1"})

        with pytest.raises(GatewayError):
            _create(stripe)

    def test_unreadable_body(self, stripe, http):
        resp = _response()
        resp.json.side_effect = ValueError("no json")
        http.post.return_value = resp

        with pytest.raises(GatewayError):
            _create(stripe)


def test_line_items_use_minor_units():
    line_items = to_stripe_line_items(ITEMS, "eur")

    assert line_items[0]["price_data"]["unit_amount"] == 1500
    assert line_items[0]["price_data"]["currency"] == "eur"
    assert line_items[1]["price_data"]["product_data"]["images"] == []


@patch("services.checkout_gateway.settings")
def test_gateway_dependency_reads_settings(mock_settings):
    mock_settings.STRIPE_SECRET_KEY = "sk_live_x"
    mock_settings.STRIPE_API_BASE = "https://api.stripe.com/"
    mock_settings.GATEWAY_TIMEOUT_SECONDS = 7
    mock_settings.CHECKOUT_CURRENCY = "usd"

    gateway = get_checkout_gateway()

    assert gateway.secret_key == "sk_live_x"
    assert gateway.base_url == "https://api.stripe.com"
    assert gateway.timeout == 7
    assert gateway.currency == "usd"


def test_gateway_dependency_reuses_connection_pool():
    first = get_checkout_gateway()
    second = get_checkout_gateway()

    assert first.http is second.http
