"""M-Pesa Daraja STK push adapter."""
import asyncio
import base64
import logging
import time
from datetime import datetime
from decimal import Decimal, ROUND_CEILING
from typing import Any, Callable, Dict, Optional, Tuple

import aiohttp

from ...application.ports.payment_gateway import PushPaymentGateway, PushRequest
from ...exceptions import GatewayRejected, TransientPollError
from ...utils import clinic_now

logger = logging.getLogger(__name__)

STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"
OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"

# Daraja answers a query for an unfinished push with this error code
PENDING_ERROR_CODES = frozenset({"500.001.1001"})


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def stk_query_status(data: Dict[str, Any]) -> str:
    """Map an STK query response to a provider status code."""
    if "ResultCode" in data:
        return str(data["ResultCode"])
    error_code = str(data.get("errorCode", ""))
    if error_code in PENDING_ERROR_CODES:
        return "pending"
    raise TransientPollError(data.get("errorMessage") or f"Unexpected M-Pesa query response: {data}")


def parse_stk_callback(body: Dict[str, Any]) -> Tuple[str, str, Optional[str]]:
    """Return (CheckoutRequestID, ResultCode, ResultDesc) from a Daraja result callback."""
    try:
        callback = body["Body"]["stkCallback"]
        return callback["CheckoutRequestID"], str(callback["ResultCode"]), callback.get("ResultDesc")
    except (KeyError, TypeError):
        raise ValueError("Malformed M-Pesa callback payload")


class MpesaStkGateway(PushPaymentGateway):
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = clinic_now,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.clock = clock
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _credentials(self) -> Dict[str, str]:
        timestamp = self.clock().strftime("%Y%m%d%H%M%S")
        return {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
        }

    async def initiate(self, phone: str, amount: Decimal, reference: str, description: str) -> PushRequest:
        if not self.consumer_key or not self.passkey:
            raise GatewayRejected("M-Pesa payments are not configured")
        payload = {
            **self._credentials(),
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(Decimal(amount).to_integral_value(rounding=ROUND_CEILING)),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": reference[:12],
            "TransactionDesc": description[:13],
        }
        status, data = await self._post(STK_PUSH_PATH, payload)
        if status >= 400 or str(data.get("ResponseCode")) != "0":
            message = data.get("errorMessage") or data.get("ResponseDescription") or "M-Pesa rejected the payment request"
            logger.warning(f"STK push for {reference} rejected: {message}")
            raise GatewayRejected(message, provider_code=data.get("errorCode") or data.get("ResponseCode"))
        logger.info(f"STK push sent for {reference}: {data.get('CheckoutRequestID')}")
        return PushRequest(reference=data["CheckoutRequestID"], customer_message=data.get("CustomerMessage"))

    async def get_status(self, reference: str) -> str:
        _, data = await self._post(STK_QUERY_PATH, {**self._credentials(), "CheckoutRequestID": reference})
        return stk_query_status(data)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                token = await self._access_token(session)
                async with session.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                ) as resp:
                    data = await resp.json(content_type=None)
                    return resp.status, data if isinstance(data, dict) else {}
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransientPollError(f"M-Pesa request to {path} failed: {e}")

    async def _access_token(self, session: aiohttp.ClientSession) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        async with session.get(
            f"{self.base_url}{OAUTH_PATH}",
            auth=aiohttp.BasicAuth(self.consumer_key, self.consumer_secret),
        ) as resp:
            if resp.status != 200:
                raise TransientPollError(f"M-Pesa authentication failed with HTTP {resp.status}")
            data = await resp.json(content_type=None)
        self._token = data["access_token"]
        # Refresh a minute before Daraja expires the token
        self._token_expires_at = time.monotonic() + int(data.get("expires_in", 3599)) - 60
        return self._token
