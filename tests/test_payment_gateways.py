import base64
from datetime import datetime
from decimal import Decimal

import pytest

from app.exceptions import GatewayRejected, TransientPollError
from app.infrastructure.payments.mpesa_gateway import (
    MpesaStkGateway,
    parse_stk_callback,
    stk_password,
    stk_query_status,
)
from app.infrastructure.payments.stripe_gateway import StripeCheckoutGateway, checkout_status


def make_mpesa(responses):
    gw = MpesaStkGateway(
        base_url="https://sandbox.example",
        consumer_key="key",
        consumer_secret="secret",
        shortcode="174379",
        passkey="pass",
        callback_url="https://clinic.example/payments/mpesa/callback",
        clock=lambda: datetime(2030, 1, 7, 9, 15, 30),
    )
    sent = []

    async def fake_post(path, payload):
        sent.append((path, payload))
        return responses.pop(0)

    gw._post = fake_post
    return gw, sent


def test_stk_password_is_base64_of_shortcode_passkey_timestamp():
    password = stk_password("174379", "pass", "20300107091530")
    assert base64.b64decode(password).decode() == "174379pass20300107091530"


def test_stk_query_status():
    assert stk_query_status({"ResultCode": "0", "ResultDesc": "ok"}) == "0"
    assert stk_query_status({"ResultCode": 1032}) == "1032"
    assert stk_query_status({"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"}) == "pending"
    with pytest.raises(TransientPollError):
        stk_query_status({"errorCode": "404.001.03", "errorMessage": "Invalid Access Token"})


def test_parse_stk_callback():
    body = {"Body": {"stkCallback": {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": "ws_CO_191220191020363925",
        "ResultCode": 1032,
        "ResultDesc": "Request cancelled by user",
    }}}
    assert parse_stk_callback(body) == ("ws_CO_191220191020363925", "1032", "Request cancelled by user")
    with pytest.raises(ValueError):
        parse_stk_callback({"Body": {}})


@pytest.mark.asyncio
async def test_mpesa_initiate_sends_stk_push():
    gw, sent = make_mpesa([(200, {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": "ws_CO_1",
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    })])
    push = await gw.initiate("254712345678", Decimal("6500.50"), "APPT1-1", "Consultation #1")

    assert push.reference == "ws_CO_1"
    assert push.customer_message.startswith("Success")
    path, payload = sent[0]
    assert path == "/mpesa/stkpush/v1/processrequest"
    assert payload["Amount"] == 6501
    assert payload["PhoneNumber"] == "254712345678"
    assert payload["Timestamp"] == "20300107091530"
    assert payload["TransactionType"] == "CustomerPayBillOnline"


@pytest.mark.asyncio
async def test_mpesa_initiate_rejection_raises_gateway_rejected():
    gw, _ = make_mpesa([(400, {"requestId": "x", "errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid PhoneNumber"})])
    with pytest.raises(GatewayRejected) as exc:
        await gw.initiate("254712345678", Decimal("6500"), "APPT1-1", "Consultation #1")
    assert exc.value.provider_message == "Bad Request - Invalid PhoneNumber"
    assert exc.value.provider_code == "400.002.02"


@pytest.mark.asyncio
async def test_mpesa_status_query():
    gw, sent = make_mpesa([(500, {"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"})])
    assert await gw.get_status("ws_CO_1") == "pending"
    assert sent[0][1]["CheckoutRequestID"] == "ws_CO_1"


@pytest.mark.asyncio
async def test_mpesa_requires_credentials():
    gw = MpesaStkGateway("https://sandbox.example", "", "", "174379", "", "https://cb")
    with pytest.raises(GatewayRejected):
        await gw.initiate("254712345678", Decimal("1"), "APPT1-1", "x")


def test_checkout_status():
    assert checkout_status("complete", "paid") == "paid"
    assert checkout_status("complete", "no_payment_required") == "no_payment_required"
    assert checkout_status("expired", "unpaid") == "expired"
    assert checkout_status("open", "unpaid") == "unpaid"
    assert checkout_status(None, None) == "open"


@pytest.mark.asyncio
async def test_stripe_create_session(monkeypatch):
    from app.infrastructure.payments import stripe_gateway as mod

    captured = {}

    class FakeSession:
        id = "cs_test_1"
        url = "https://checkout.stripe.com/c/pay/cs_test_1"

    def fake_create(**kwargs):
        captured.update(kwargs)
        return FakeSession()

    monkeypatch.setattr(mod.stripe.checkout.Session, "create", fake_create)
    gw = StripeCheckoutGateway("sk_test", "https://ok", "https://cancel", currency="KES")
    session = await gw.create_session(Decimal("6500.00"), "APPT1-1", "Consultation #1")

    assert session.reference == "cs_test_1"
    assert session.url.endswith("cs_test_1")
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 650000
    assert captured["line_items"][0]["price_data"]["currency"] == "kes"
    assert captured["client_reference_id"] == "APPT1-1"


@pytest.mark.asyncio
async def test_stripe_errors_map_to_domain_errors(monkeypatch):
    from app.infrastructure.payments import stripe_gateway as mod

    def declined(**kwargs):
        raise mod.stripe.InvalidRequestError("Amount too small", param="amount", code="amount_too_small")

    def offline(*args, **kwargs):
        raise mod.stripe.APIConnectionError("network down")

    monkeypatch.setattr(mod.stripe.checkout.Session, "create", declined)
    monkeypatch.setattr(mod.stripe.checkout.Session, "retrieve", offline)
    gw = StripeCheckoutGateway("sk_test", "https://ok", "https://cancel")

    with pytest.raises(GatewayRejected):
        await gw.create_session(Decimal("1.00"), "APPT1-1", "Consultation #1")
    with pytest.raises(TransientPollError):
        await gw.get_status("cs_test_1")


@pytest.mark.asyncio
async def test_stripe_requires_api_key():
    gw = StripeCheckoutGateway("", "https://ok", "https://cancel")
    with pytest.raises(GatewayRejected):
        await gw.create_session(Decimal("6500.00"), "APPT1-1", "Consultation #1")
