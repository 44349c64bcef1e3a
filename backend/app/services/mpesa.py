"""M-Pesa Daraja client: OAuth token, STK push, STK query and callback parsing.

Daraja docs: https://developer.safaricom.co.ke/APIs/MpesaExpressSimulate
"""

import base64
import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation

import httpx
from pydantic import BaseModel

from app.core.config import settings

logger = logging.getLogger(__name__)

# ResultCode the provider sends when the payer dismisses the STK prompt
RESULT_CANCELLED_BY_USER = 1032
# errorCode of an STK query while the prompt is still open on the phone
PENDING_ERROR_CODE = "500.001.1001"

_PHONE_RE = re.compile(r"^2547\d{8}$|^2541\d{8}$")


class MpesaError(Exception):
    """Provider unreachable or returned an HTTP error."""


class MpesaRejected(MpesaError):
    """Provider answered but refused the request (non-zero ResponseCode)."""


class MpesaPending(MpesaError):
    """The payer has not answered the STK prompt yet."""


class StkResult(BaseModel):
    """Outcome of an STK push, from the async callback or an STK query."""

    merchant_request_id: str | None = None
    checkout_request_id: str
    result_code: int
    result_desc: str = ""
    receipt_number: str | None = None
    amount: Decimal | None = None
    transaction_date: datetime | None = None
    phone_number: str | None = None

    @property
    def success(self) -> bool:
        return self.result_code == 0

    @property
    def cancelled(self) -> bool:
        return self.result_code == RESULT_CANCELLED_BY_USER


def normalize_phone(raw: str) -> str:
    """``0712345678`` / ``712345678`` / ``+254712345678`` -> ``254712345678``."""
    digits = re.sub(r"[\s\-+]", "", str(raw))
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9:
        digits = "254" + digits
    if not _PHONE_RE.match(digits):
        raise ValueError("Invalid phone number format")
    return digits


def make_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def _parse_transaction_date(value) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.strptime(str(value), "%Y%m%d%H%M%S")
    except ValueError:
        return None


def parse_callback(payload: dict) -> StkResult:
    """Parse a Daraja ``Body.stkCallback`` payload. Raises ValueError if malformed."""
    try:
        callback = payload["Body"]["stkCallback"]
        checkout_request_id = callback["CheckoutRequestID"]
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("Malformed STK callback payload")

    # Failed payments carry no CallbackMetadata at all
    raw_metadata = callback.get("CallbackMetadata") or {}
    items = raw_metadata.get("Item", []) if isinstance(raw_metadata, dict) else None
    if not isinstance(items, list):
        raise ValueError("Malformed CallbackMetadata")
    metadata = {
        item["Name"]: item.get("Value")
        for item in items
        if isinstance(item, dict) and isinstance(item.get("Name"), str)
    }

    amount = metadata.get("Amount")
    if amount is not None:
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise ValueError(f"Malformed callback Amount: {amount!r}")
        if not amount.is_finite():
            raise ValueError(f"Malformed callback Amount: {amount!r}")
    phone = metadata.get("PhoneNumber")
    return StkResult(
        merchant_request_id=callback.get("MerchantRequestID"),
        checkout_request_id=checkout_request_id,
        result_code=result_code,
        result_desc=callback.get("ResultDesc", ""),
        receipt_number=metadata.get("MpesaReceiptNumber"),
        amount=amount,
        transaction_date=_parse_transaction_date(metadata.get("TransactionDate")),
        phone_number=str(phone) if phone is not None else None,
    )


class MpesaClient:
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.timeout = timeout
        self.transport = transport

    def password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    async def get_access_token(self, client: httpx.AsyncClient) -> str:
        if not self.consumer_key or not self.consumer_secret:
            raise MpesaError("Missing MPESA credentials")
        resp = await client.get(
            f"{self.base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    async def _post(self, path: str, body: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                token = await self.get_access_token(client)
                resp = await client.post(
                    f"{self.base_url}{path}",
                    json=body,
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                )
                try:
                    data = resp.json()
                except ValueError:
                    data = {}
                # Daraja answers a still-open prompt with HTTP 500 and this errorCode
                if isinstance(data, dict) and data.get("errorCode") == PENDING_ERROR_CODE:
                    raise MpesaPending(data.get("errorMessage") or "The transaction is being processed")
                resp.raise_for_status()
                if not isinstance(data, dict) or not data:
                    raise ValueError("empty or non-object body")
                return data
        except httpx.HTTPStatusError as exc:
            logger.error("M-Pesa API error on %s: %s", path, exc)
            raise MpesaError("M-Pesa API error") from exc
        except httpx.RequestError as exc:
            logger.error("M-Pesa connection error on %s: %s", path, exc)
            raise MpesaError("Cannot reach M-Pesa API") from exc
        except (KeyError, ValueError) as exc:
            logger.error("M-Pesa returned an unreadable response on %s: %s", path, exc)
            raise MpesaError("Unexpected M-Pesa response") from exc

    async def stk_push(self, phone: str, amount: int, reference: str, description: str) -> dict:
        """Send the payment prompt. Returns the provider echo (MerchantRequestID, CheckoutRequestID...)."""
        timestamp = make_timestamp()
        body = {
            "BusinessShortCode": self.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": reference,
            "TransactionDesc": description,
        }
        data = await self._post("/mpesa/stkpush/v1/processrequest", body)
        if str(data.get("ResponseCode")) != "0":
            raise MpesaRejected(data.get("ResponseDescription") or data.get("errorMessage") or "STK push rejected")
        return data

    async def stk_query(self, checkout_request_id: str) -> StkResult:
        timestamp = make_timestamp()
        data = await self._post(
            "/mpesa/stkpushquery/v1/query",
            {
                "BusinessShortCode": self.shortcode,
                "Password": self.password(timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": checkout_request_id,
            },
        )
        try:
            result_code = int(data["ResultCode"])
        except (KeyError, TypeError, ValueError):
            raise MpesaError(data.get("errorMessage") or "STK query returned no result")
        return StkResult(
            merchant_request_id=data.get("MerchantRequestID"),
            checkout_request_id=data.get("CheckoutRequestID", checkout_request_id),
            result_code=result_code,
            result_desc=data.get("ResultDesc", ""),
        )


mpesa_client = MpesaClient(
    base_url=settings.MPESA_BASE_URL,
    consumer_key=settings.MPESA_CONSUMER_KEY,
    consumer_secret=settings.MPESA_CONSUMER_SECRET,
    shortcode=settings.MPESA_SHORTCODE,
    passkey=settings.MPESA_PASSKEY,
    callback_url=settings.MPESA_CALLBACK_URL,
    timeout=settings.MPESA_TIMEOUT_SECONDS,
)


def get_mpesa_client() -> MpesaClient:
    return mpesa_client
