import hashlib
import hmac
import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from models.enums import PaymentMethod, PaymentStatus
from utils.peach_gateway import (
    GatewayError,
    PeachGateway,
    classify_result_code,
    extract_payment_method_detail,
    result_code,
    signature_payload,
)


@pytest.mark.parametrize("code, expected", [
    ("000.000.000", PaymentStatus.COMPLETED),
    ("000.100.110", PaymentStatus.COMPLETED),
    ("000.200.000", PaymentStatus.PENDING),
    ("100.396.104", PaymentStatus.CANCELLED),
    ("800.100.151", PaymentStatus.FAILED),
    ("", PaymentStatus.FAILED),
    (None, PaymentStatus.FAILED),
])
def test_classify_result_code(code, expected):
    assert classify_result_code(code) is expected


def test_result_code_reads_nested_and_flattened_forms():
    assert result_code({"result": {"code": "000.000.000"}}) == "000.000.000"
    assert result_code({"result.code": "800.100.151"}) == "800.100.151"
    assert result_code({}) == ""


def test_signature_payload_sorts_keys_and_skips_signature():
    params = {"b": "2", "a": "1", "signature": "abc", "c.d": "x"}
    assert signature_payload(params) == "a1b2c.dx"


def test_extract_card_details():
    fields = extract_payment_method_detail({
        "paymentBrand": "VISA",
        "registrationId": "8ac7a4a1reg",
        "card": {"last4Digits": "4242", "holder": "Jane Doe", "expiryMonth": "07", "expiryYear": "2031"},
    })
    assert fields["payment_method"] is PaymentMethod.CARD
    assert fields["gateway_registration_token"] == "8ac7a4a1reg"
    assert fields["masked_card_last_four"] == "4242"
    assert fields["expiry_month"] == 7
    assert fields["expiry_year"] == 2031


def test_extract_flattened_webhook_fields():
    fields = extract_payment_method_detail({
        "paymentBrand": "EFT",
        "registrationId": "",
        "bankAccount.bankName": "Example Bank",
    })
    assert fields["payment_method"] is PaymentMethod.EFT
    assert fields["gateway_registration_token"] is None
    assert fields["bank_name"] == "Example Bank"


@pytest.fixture
def peach(app):
    """A gateway wired to an in-process transport that records every request."""
    peach = PeachGateway(app)
    peach.requests = []
    peach.responses = {}

    def handler(request):
        peach.requests.append(request)
        status, body = peach.responses.get(request.url.path, (404, {"error": "not found"}))
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body)

    peach._client = httpx.Client(transport=httpx.MockTransport(handler))
    peach.responses["/api/oauth/token"] = (200, {"access_token": "tok-1", "expires_in": 3600})
    return peach


def test_token_is_cached_between_calls(peach):
    peach.responses["/v2/checkout/chk-1/status"] = (200, {"result": {"code": "000.000.000"}})
    peach.responses["/v1/payments/pay-1"] = (200, {"id": "pay-1"})

    peach.get_payment_details("pay-1")
    peach.get_payment_details("pay-1")

    token_calls = [r for r in peach.requests if r.url.path == "/api/oauth/token"]
    assert len(token_calls) == 1
    assert peach.requests[-1].headers["Authorization"] == "Bearer tok-1"


def test_charge_registration_sends_recurring_debit(peach):
    peach.responses["/v2/payments"] = (200, {"id": "pay-9", "result": {"code": "000.100.110"}})

    response = peach.charge_registration("reg-1", Decimal("100"), "RENEWAL_abc", 7, "ZAR")

    assert response["id"] == "pay-9"
    body = json.loads(peach.requests[-1].content)
    assert body["registrationId"] == "reg-1"
    assert body["amount"] == "100.00"
    assert body["paymentType"] == "DB"
    assert body["merchantTransactionId"] == "RENEWAL_abc"
    assert body["customer"] == {"merchantCustomerId": "7"}


def test_create_checkout_requests_registration_for_cards(peach):
    peach.responses["/v2/checkout"] = (200, {"checkoutId": "chk-42"})
    payment = SimpleNamespace(amount=Decimal("99.5"), currency="ZAR", merchant_transaction_id="TXN_1",
                              user_id=3, subscription_id=5)

    checkout = peach.create_checkout(payment, PaymentMethod.CARD, enable_recurring=True)

    assert checkout["checkout_id"] == "chk-42"
    body = json.loads(peach.requests[-1].content)
    assert body["createRegistration"] is True
    assert body["amount"] == "99.50"
    assert "paymentBrand" not in body


def test_create_checkout_sets_brand_for_voucher(peach):
    peach.responses["/v2/checkout"] = (200, {"checkoutId": "chk-43"})
    payment = SimpleNamespace(amount=Decimal("10"), currency="ZAR", merchant_transaction_id="TXN_2",
                              user_id=3, subscription_id=None)

    peach.create_checkout(payment, PaymentMethod.VOUCHER)

    body = json.loads(peach.requests[-1].content)
    assert body["paymentBrand"] == "1VOUCHER"
    assert "createRegistration" not in body


def test_http_error_status_raises_gateway_error(peach):
    peach.responses["/v2/payments"] = (500, {"error": "boom"})

    with pytest.raises(GatewayError):
        peach.charge_registration("reg-1", Decimal("1"), "RENEWAL_x", 1)


def test_transport_failure_raises_gateway_error(peach):
    peach.responses["/v2/checkout/chk-1/status"] = (200, httpx.ReadTimeout("timed out"))

    with pytest.raises(GatewayError, match="timeout"):
        peach.get_checkout_status("chk-1")


def test_missing_access_token_raises(peach):
    peach.responses["/api/oauth/token"] = (200, {"error": "invalid_client"})

    with pytest.raises(GatewayError):
        peach.authenticate()


def test_non_numeric_token_expiry_raises_gateway_error(peach):
    peach.responses["/api/oauth/token"] = (200, {"access_token": "t", "expires_in": "soon"})

    with pytest.raises(GatewayError, match="expires_in"):
        peach.authenticate()
    assert peach._token is None


def test_non_object_json_body_raises_gateway_error(peach):
    peach.responses["/v2/checkout/chk-1/status"] = (200, ["000.000.000"])

    with pytest.raises(GatewayError, match="unexpected JSON"):
        peach.get_checkout_status("chk-1")


def test_webhook_signature_validation(peach):
    params = {"merchantTransactionId": "TXN_1", "result.code": "000.000.000", "amount": "100.00"}
    signature = hmac.new(b"whsec-test", signature_payload(params).encode(), hashlib.sha256).hexdigest()

    assert peach.validate_webhook_signature(dict(params, signature=signature), signature) is True
    assert peach.validate_webhook_signature(dict(params, amount="1.00", signature=signature), signature) is False
    assert peach.validate_webhook_signature(params, "") is False
