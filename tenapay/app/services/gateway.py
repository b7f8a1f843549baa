"""
Arifpay payment gateway client.

Outbound calls only: checkout sessions for top-ups and Telebirr B2C
transfers for claim payouts. Every failure surfaces as ExternalServiceError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from tenapay.app.core.config import settings
from tenapay.app.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "arifpay"


@dataclass
class CheckoutSession:
    session_id: str
    checkout_url: str
    total_amount: Decimal


class GatewayClient:

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "GatewayClient":
        return cls(
            base_url=settings.gateway_base_url,
            api_key=settings.gateway_api_key,
            timeout=settings.gateway_timeout_seconds,
        )

    async def transfer(self, session_id: str, phone: str) -> Dict[str, Any]:
        """
        Request a Telebirr B2C transfer.

        'session_id' is the local DEBIT transaction id; the gateway treats it
        as the idempotency key, so repeating the call cannot pay out twice.
        """
        payload = {"Sessionid": session_id, "PhoneNumber": phone}
        data = await self._post("/Telebirr/b2c/transfer", payload, idempotency_key=session_id)
        logger.info("Transfer accepted by gateway: session=%s phone=%s", session_id, phone)
        return data

    async def create_checkout_session(
        self,
        phone: str,
        email: str,
        nonce: str,
        items: List[Dict[str, Any]],
        total_amount: Decimal,
        lang: str = "EN",
        payment_methods: Optional[List[str]] = None
    ) -> CheckoutSession:
        """Open a hosted checkout session for a wallet top-up."""
        expire_date = datetime.now(timezone.utc) + timedelta(minutes=settings.checkout_expiry_minutes)
        payload = {
            "merchant_id": settings.gateway_merchant_id,
            "cancelUrl": settings.checkout_cancel_url,
            "successUrl": settings.checkout_success_url,
            "errorUrl": settings.checkout_error_url,
            "notifyUrl": settings.checkout_notify_url,
            "phone": phone,
            "email": email,
            "nonce": nonce,
            "paymentMethods": payment_methods or ["TELEBIRR"],
            "expireDate": expire_date.isoformat(),
            "items": items,
            "lang": lang,
            "beneficiaries": [
                {
                    "accountNumber": settings.beneficiary_account,
                    "bank": settings.beneficiary_bank,
                    "amount": float(total_amount),
                }
            ],
        }

        body = await self._post("/checkout/session", payload, idempotency_key=nonce)
        data = body.get("data") or {}
        session_id = data.get("sessionId") or data.get("Sessionid")
        checkout_url = data.get("paymentUrl")

        if not session_id or not checkout_url:
            logger.warning("Checkout response missing sessionId/paymentUrl: %s", data)
            raise ExternalServiceError(SERVICE_NAME, "checkout response invalid")

        logger.info("Checkout created: session=%s amount=%s", session_id, total_amount)
        return CheckoutSession(
            session_id=str(session_id),
            checkout_url=checkout_url,
            total_amount=total_amount
        )

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        headers = {"x-arifpay-key": self.api_key}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport
            ) as client:
                response = await client.post(path, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(SERVICE_NAME, f"timeout calling {path}") from exc
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{path} returned {exc.response.status_code}",
                details={"status_code": exc.response.status_code}
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(SERVICE_NAME, f"{path} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalServiceError(SERVICE_NAME, f"{path} returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise ExternalServiceError(SERVICE_NAME, f"{path} returned an unexpected body")
        return body
