"""Unit tests for the M-Pesa client, callback handling and payment verification."""

import base64
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi import HTTPException

from app.api.orders import CALLBACK_ACK, CALLBACK_REJECTED, apply_payment_result, mpesa_callback, verify_order
from app.models.order import OrderStatus
from app.schemas.order import VerifyRequest
from app.services.mpesa import (
    MpesaClient,
    MpesaError,
    MpesaPending,
    MpesaRejected,
    StkResult,
    normalize_phone,
    parse_callback,
)

CHECKOUT_ID = "ws_CO_191020261200"


def _callback(result_code: int, desc: str, with_metadata: bool = False) -> dict:
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": CHECKOUT_ID,
        "ResultCode": result_code,
        "ResultDesc": desc,
    }
    if with_metadata:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 600.0},
                {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                {"Name": "TransactionDate", "Value": 20261019120512},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


SUCCESS = _callback(0, "The service request is processed successfully.", with_metadata=True)
CANCELLED = _callback(1032, "Request cancelled by user")
INSUFFICIENT = _callback(1, "The balance is insufficient for the transaction")


def _client(handler) -> MpesaClient:
    return MpesaClient(
        base_url="https://sandbox.safaricom.co.ke",
        consumer_key="key",
        consumer_secret="secret",
        shortcode="174379",
        passkey="passkey",
        callback_url="https://example.com/api/order/mpesa-callback",
        transport=httpx.MockTransport(handler),
    )


def _request(payload=None, error: Exception | None = None) -> MagicMock:
    request = MagicMock()
    request.json = AsyncMock(return_value=payload, side_effect=error)
    return request


# ── Phone numbers ─────────────────────────────────

@pytest.mark.parametrize("raw", ["0712345678", "712345678", "+254712345678", "254 712 345 678", "0112345678"])
def test_normalize_phone(raw):
    assert normalize_phone(raw).startswith("254")
    assert len(normalize_phone(raw)) == 12


@pytest.mark.parametrize("raw", ["0812345678", "12345", "2547123456789", "abc"])
def test_normalize_phone_rejects(raw):
    with pytest.raises(ValueError):
        normalize_phone(raw)


# ── Callback parsing ──────────────────────────────

def test_parse_success_callback():
    result = parse_callback(SUCCESS)
    assert result.success
    assert result.checkout_request_id == CHECKOUT_ID
    assert result.receipt_number == "NLJ7RT61SV"
    assert result.amount == Decimal("600.0")
    assert result.transaction_date == datetime(2026, 10, 19, 12, 5, 12)
    assert result.phone_number == "254712345678"


def test_parse_cancelled_callback():
    result = parse_callback(CANCELLED)
    assert not result.success
    assert result.cancelled
    assert result.receipt_number is None


def _with_metadata(metadata) -> dict:
    payload = _callback(0, "The service request is processed successfully.")
    payload["Body"]["stkCallback"]["CallbackMetadata"] = metadata
    return payload


def _with_amount(amount) -> dict:
    return _with_metadata({"Item": [{"Name": "Amount", "Value": amount}, {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"}]})


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"Body": {}},
        {"Body": {"stkCallback": {"ResultCode": 0}}},
        [],
        _with_metadata({"Item": None}),
        _with_metadata({"Item": {"Name": "Amount", "Value": 600}}),
        _with_metadata("not-an-object"),
        _with_amount("abc"),
        _with_amount("NaN"),
        _with_amount([600]),
    ],
)
def test_parse_malformed_callback(payload):
    with pytest.raises(ValueError):
        parse_callback(payload)


def test_parse_failure_callback_without_metadata():
    result = parse_callback(_with_metadata({}))
    assert result.amount is None
    assert result.receipt_number is None


# ── Applying results ──────────────────────────────

def test_success_marks_paid(make_order):
    order = make_order(status=OrderStatus.PAYMENT_PENDING)
    apply_payment_result(order, parse_callback(SUCCESS), datetime.now(timezone.utc))

    assert order.payment is True
    assert order.status == OrderStatus.FOOD_PROCESSING
    assert order.payment_confirmation["mpesaReceiptNumber"] == "NLJ7RT61SV"
    assert order.payment_confirmation["amount"] == "600.0"


def test_success_does_not_move_order_backwards(make_order):
    order = make_order(status=OrderStatus.ON_THE_WAY)
    apply_payment_result(order, parse_callback(SUCCESS), datetime.now(timezone.utc))

    assert order.payment is True
    assert order.status == OrderStatus.ON_THE_WAY


def test_failure_marks_payment_failed(make_order):
    order = make_order(status=OrderStatus.FOOD_PROCESSING)
    apply_payment_result(order, parse_callback(INSUFFICIENT), datetime.now(timezone.utc))

    assert order.payment is False
    assert order.status == OrderStatus.PAYMENT_FAILED
    assert order.payment_failure["resultCode"] == 1


def test_user_cancel_marks_cancelled(make_order):
    order = make_order(status=OrderStatus.FOOD_PROCESSING)
    apply_payment_result(order, parse_callback(CANCELLED), datetime.now(timezone.utc))

    assert order.payment is False
    assert order.status == OrderStatus.CANCELLED


def test_late_failure_ignored_once_paid(make_order):
    order = make_order()
    now = datetime.now(timezone.utc)
    apply_payment_result(order, parse_callback(SUCCESS), now)
    apply_payment_result(order, parse_callback(INSUFFICIENT), now)

    assert order.payment is True
    assert order.payment_failure is None


# ── Callback endpoint ─────────────────────────────

@pytest.mark.asyncio
async def test_callback_success(mock_db, make_order):
    order = make_order()

    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=order)):
        resp = await mpesa_callback(_request(SUCCESS), db=mock_db)

    assert resp == CALLBACK_ACK
    assert order.payment is True
    mock_db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_callback_failure_keeps_order(mock_db, make_order):
    order = make_order(status=OrderStatus.FOOD_PROCESSING)

    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=order)):
        resp = await mpesa_callback(_request(INSUFFICIENT), db=mock_db)

    assert resp == CALLBACK_ACK
    assert order.payment is False
    assert order.status == OrderStatus.PAYMENT_FAILED
    mock_db.delete.assert_not_called()


@pytest.mark.asyncio
async def test_callback_unknown_order_is_acknowledged(mock_db):
    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=None)):
        resp = await mpesa_callback(_request(SUCCESS), db=mock_db)

    assert resp == CALLBACK_ACK
    mock_db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_callback_malformed_payload(mock_db):
    resp = await mpesa_callback(_request({"foo": "bar"}), db=mock_db)
    assert resp == CALLBACK_REJECTED


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [_with_metadata({"Item": None}), _with_amount("abc")])
async def test_callback_bad_metadata_is_rejected_not_crashed(mock_db, payload):
    with patch("app.api.orders._find_by_correlation", AsyncMock()) as find:
        resp = await mpesa_callback(_request(payload), db=mock_db)

    assert resp == CALLBACK_REJECTED
    find.assert_not_awaited()
    mock_db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_callback_invalid_json(mock_db):
    resp = await mpesa_callback(_request(error=ValueError("bad json")), db=mock_db)
    assert resp == CALLBACK_REJECTED
    mock_db.commit.assert_not_awaited()


# ── Verify endpoint ───────────────────────────────

@pytest.mark.asyncio
async def test_verify_confirmed_by_provider(mock_db, make_order):
    order = make_order()
    mpesa = MagicMock()
    mpesa.stk_query = AsyncMock(
        return_value=StkResult(checkout_request_id=CHECKOUT_ID, result_code=0, result_desc="Processed")
    )

    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=order)):
        resp = await verify_order(VerifyRequest(correlation_id=CHECKOUT_ID), db=mock_db, mpesa=mpesa)

    assert resp.success
    assert resp.redirect_to == "/orders"
    assert order.status == OrderStatus.FOOD_PROCESSING


@pytest.mark.asyncio
async def test_verify_client_success_claim_is_not_trusted(mock_db, make_order):
    order = make_order()
    mpesa = MagicMock()
    mpesa.stk_query = AsyncMock(
        return_value=StkResult(checkout_request_id=CHECKOUT_ID, result_code=2001, result_desc="Wrong PIN")
    )

    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=order)):
        resp = await verify_order(
            VerifyRequest(correlation_id=CHECKOUT_ID, outcome="success"), db=mock_db, mpesa=mpesa
        )

    assert not resp.success
    assert resp.redirect_to == "/checkout"
    assert order.payment is False
    assert order.status == OrderStatus.PAYMENT_FAILED


@pytest.mark.asyncio
async def test_verify_cancelled_by_customer(mock_db, make_order):
    order = make_order()
    mpesa = MagicMock()
    mpesa.stk_query = AsyncMock()

    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=order)):
        resp = await verify_order(
            VerifyRequest.model_validate({"CheckoutRequestID": CHECKOUT_ID, "outcome": "cancelled"}),
            db=mock_db,
            mpesa=mpesa,
        )

    assert not resp.success
    assert order.status == OrderStatus.CANCELLED
    mpesa.stk_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_verify_while_prompt_open(mock_db, make_order):
    order = make_order()
    mpesa = MagicMock()
    mpesa.stk_query = AsyncMock(side_effect=MpesaPending("The transaction is being processed"))

    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=order)):
        resp = await verify_order(VerifyRequest(correlation_id=CHECKOUT_ID), db=mock_db, mpesa=mpesa)

    assert not resp.success
    assert order.status == OrderStatus.PAYMENT_PENDING
    mock_db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_verify_unknown_correlation(mock_db):
    with patch("app.api.orders._find_by_correlation", AsyncMock(return_value=None)):
        with pytest.raises(HTTPException) as exc:
            await verify_order(VerifyRequest(correlation_id="nope"), db=mock_db, mpesa=MagicMock())
    assert exc.value.status_code == 404


# ── HTTP client ───────────────────────────────────

def test_password_encoding():
    client = _client(lambda request: httpx.Response(200))
    assert base64.b64decode(client.password("20261019120000")) == b"174379passkey20261019120000"


def _oauth_or(handler):
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": "3599"})
        assert request.headers["Authorization"] == "Bearer tok"
        return handler(request)

    return route


@pytest.mark.asyncio
async def test_stk_push_accepted():
    client = _client(_oauth_or(lambda request: httpx.Response(200, json={"ResponseCode": "0", "CheckoutRequestID": CHECKOUT_ID})))
    data = await client.stk_push("254712345678", 600, "ORD1", "Order Payment")
    assert data["CheckoutRequestID"] == CHECKOUT_ID


@pytest.mark.asyncio
async def test_stk_push_rejected():
    client = _client(_oauth_or(lambda request: httpx.Response(200, json={"ResponseCode": "1", "ResponseDescription": "Rejected"})))
    with pytest.raises(MpesaRejected):
        await client.stk_push("254712345678", 600, "ORD1", "Order Payment")


@pytest.mark.asyncio
async def test_stk_query_pending():
    client = _client(_oauth_or(lambda request: httpx.Response(
        500, json={"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"}
    )))
    with pytest.raises(MpesaPending):
        await client.stk_query(CHECKOUT_ID)


@pytest.mark.asyncio
async def test_stk_query_result():
    client = _client(_oauth_or(lambda request: httpx.Response(
        200, json={"ResponseCode": "0", "CheckoutRequestID": CHECKOUT_ID, "ResultCode": "1032", "ResultDesc": "Request cancelled by user"}
    )))
    result = await client.stk_query(CHECKOUT_ID)
    assert result.cancelled


@pytest.mark.asyncio
async def test_provider_unreachable():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(MpesaError) as exc:
        await _client(refuse).stk_push("254712345678", 600, "ORD1", "Order Payment")
    assert not isinstance(exc.value, MpesaRejected)


@pytest.mark.asyncio
async def test_missing_credentials():
    client = MpesaClient(
        base_url="https://sandbox.safaricom.co.ke",
        consumer_key="",
        consumer_secret="",
        shortcode="174379",
        passkey="passkey",
        callback_url="https://example.com/cb",
    )
    with pytest.raises(MpesaError):
        await client.stk_query(CHECKOUT_ID)
