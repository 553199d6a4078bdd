import json
import time

import pytest

from core.errors import AuthenticationError, MalformedEventError
from services.webhooks import parse_event, verify

SECRET = "whsec_unit"


def _payload(order_id="order_abc"):
    body = {
        "id": "evt_123",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_test_1", "object": "checkout.session", "client_reference_id": order_id}},
    }
    # Provider formatting, deliberately not what json.dumps would produce by default
    return json.dumps(body, indent=2).encode()


class TestVerify:
    """Signature checks over the raw request body"""

    def test_valid_signature_returns_event(self, sign):
        raw = _payload()

        event = verify(raw, sign(raw, SECRET), SECRET)

        assert event.correlation_id == "order_abc"
        assert event.type == "checkout.session.completed"
        assert event.session_id == "cs_test_1"
        assert event.id == "evt_123"
        assert event.is_completion

    def test_tampered_byte_fails(self, sign):
        raw = _payload()
        header = sign(raw, SECRET)
        tampered = raw.replace(b"order_abc", b"order_abd")

        with pytest.raises(AuthenticationError):
            verify(tampered, header, SECRET)

    def test_reserialised_body_fails(self, sign):
        raw = _payload()
        header = sign(raw, SECRET)
        reencoded = json.dumps(json.loads(raw)).encode()

        with pytest.raises(AuthenticationError):
            verify(reencoded, header, SECRET)

    def test_wrong_secret_fails(self, sign):
        raw = _payload()

        with pytest.raises(AuthenticationError):
            verify(raw, sign(raw, "whsec_other"), SECRET)

    def test_any_matching_v1_accepted(self, sign):
        raw = _payload()
        header = sign(raw, SECRET).replace("v1=", f"v1={'0' * 64},v1=")

        assert verify(raw, header, SECRET).correlation_id == "order_abc"

    @pytest.mark.parametrize("header", [
        None,
        "",
        "garbage",
        "t=abc,v1=deadbeef",
        "v1=deadbeef",
        f"t={int(time.time())}",
        f"t={int(time.time())},v0=deadbeef",
    ])
    def test_malformed_header(self, header):
        with pytest.raises(AuthenticationError):
            verify(_payload(), header, SECRET)

    def test_stale_timestamp_rejected(self, sign):
        raw = _payload()
        header = sign(raw, SECRET, timestamp=int(time.time()) - 3600)

        with pytest.raises(AuthenticationError):
            verify(raw, header, SECRET, tolerance=300)

    def test_tolerance_disabled(self, sign):
        raw = _payload()
        header = sign(raw, SECRET, timestamp=1_000)

        assert verify(raw, header, SECRET, tolerance=None).correlation_id == "order_abc"

    def test_missing_secret(self, sign):
        raw = _payload()

        with pytest.raises(AuthenticationError):
            verify(raw, sign(raw, SECRET), "")

    def test_signed_but_not_json(self, sign):
        raw = b"not json at all"

        with pytest.raises(MalformedEventError):
            verify(raw, sign(raw, SECRET), SECRET)

    def test_signed_but_not_an_object(self, sign):
        raw = b"[1, 2, 3]"

        with pytest.raises(MalformedEventError):
            verify(raw, sign(raw, SECRET), SECRET)

    def test_signed_event_without_type(self, sign):
        raw = b'{"id": "evt_1", "object": "event"}'

        with pytest.raises(MalformedEventError):
            verify(raw, sign(raw, SECRET), SECRET)


class TestParseEvent:
    """Event extraction after verification"""

    def test_event_without_object(self):
        event = parse_event(b'{"id": "evt_1", "type": "customer.created"}')

        assert event.type == "customer.created"
        assert event.correlation_id is None
        assert not event.is_completion

    def test_missing_type(self):
        with pytest.raises(MalformedEventError):
            parse_event(b'{"id": "evt_1"}')

    def test_non_object_body(self):
        with pytest.raises(MalformedEventError):
            parse_event(b"[1, 2, 3]")

    def test_non_string_reference_ignored(self):
        event = parse_event(b'{"type": "checkout.session.completed", "data": {"object": {"client_reference_id": 5}}}')

        assert event.correlation_id is None
