import base64
import json

import httpx
from pydantic import SecretStr
import pytest

from consultdesk.integrations import FakeRazorpayClient, RazorpayClient, RazorpayError


def _client(handler) -> RazorpayClient:
    return RazorpayClient(
        key_id="rzp_test_key",
        key_secret=SecretStr("rzp_test_secret"),
        base_url="https://razorpay.test/v1",
        transport=httpx.MockTransport(handler),
    )


def test_create_order_posts_minor_units_with_basic_auth():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "order_abc", "amount": 150050, "status": "created"})

    order = _client(handler).create_order(
        amount_minor=150050,
        currency="INR",
        receipt="sess_01HSESSION",
        notes={"session_id": "01HSESSION", "quotation_id": None},
    )

    assert order["id"] == "order_abc"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/orders"
    expected = base64.b64encode(b"rzp_test_key:rzp_test_secret").decode()
    assert request.headers["Authorization"] == f"Basic {expected}"
    assert json.loads(request.content) == {
        "amount": 150050,
        "currency": "INR",
        "receipt": "sess_01HSESSION",
        "notes": {"session_id": "01HSESSION"},
    }


def test_api_error_carries_description_and_status():
    def handler(request):
        return httpx.Response(
            400,
            json={
                "error": {
                    "code": "BAD_REQUEST_ERROR",
                    "description": "The id provided does not exist",
                }
            },
        )

    with pytest.raises(RazorpayError) as exc_info:
        _client(handler).fetch_payment("pay_missing")

    assert exc_info.value.message == "The id provided does not exist"
    assert exc_info.value.status_code == 400
    assert exc_info.value.details["code"] == "BAD_REQUEST_ERROR"


def test_non_json_error_body_is_kept_raw():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(RazorpayError) as exc_info:
        _client(handler).fetch_payment("pay_1")

    assert exc_info.value.status_code == 502
    assert exc_info.value.details == {"raw": "Bad Gateway"}


def test_unreachable_gateway_has_no_status():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RazorpayError) as exc_info:
        _client(handler).create_order(amount_minor=100, currency="INR", receipt="r")

    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


def test_refund_sends_optional_amount():
    bodies = []

    def handler(request):
        bodies.append((request.url.path, json.loads(request.content) if request.content else {}))
        return httpx.Response(200, json={"id": "rfnd_1", "status": "processed"})

    client = _client(handler)
    client.refund("pay_1", amount_minor=50000, notes={"reason": "Client request"})
    client.refund("pay_2")

    assert bodies == [
        ("/v1/payments/pay_1/refund", {"amount": 50000, "notes": {"reason": "Client request"}}),
        ("/v1/payments/pay_2/refund", {}),
    ]


def test_fake_client_records_calls_and_rejects_unknown_payments():
    client = FakeRazorpayClient()
    order = client.create_order(amount_minor=100000, currency="INR", receipt="r1")
    client.add_payment("pay_1", order_id=order["id"], amount_minor=100000)

    assert client.key_id == "rzp_test_fake"
    assert client.fetch_payment("pay_1")["order_id"] == order["id"]
    assert client.refund("pay_1")["amount"] == 100000
    assert client.refund("pay_1", amount_minor=2500)["amount"] == 2500
    with pytest.raises(RazorpayError) as exc_info:
        client.fetch_payment("pay_unknown")
    assert exc_info.value.status_code == 400
    assert [call["method"] for call in client._calls] == [
        "create_order",
        "fetch_payment",
        "refund",
        "refund",
        "fetch_payment",
    ]
