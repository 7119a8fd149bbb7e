"""
storefront/integrations/paypal.py - PayPal Orders v2 REST client.

Creates PayPal orders for storefront orders (our order id travels as
`custom_id`, which every later webhook echoes back) and captures approved
orders. OAuth2 client-credentials tokens are cached until shortly before
they expire.
"""
import logging
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from storefront.config import Settings

logger = logging.getLogger("storefront.paypal")


class PayPalError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, debug_id: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.debug_id = debug_id


class PayPalClient:
    def __init__(self, cfg: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cfg = cfg
        self.base_url = cfg.PAYPAL_BASE_URL
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.cfg.paypal_timeout,
            transport=self._transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.cfg.paypal_client_id and self.cfg.paypal_client_secret)

    async def access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires:
            return self._token
        if not self.configured:
            raise PayPalError("PayPal credentials are not configured")
        try:
            async with self._client() as client:
                r = await client.post(
                    "/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self.cfg.paypal_client_id, self.cfg.paypal_client_secret),
                )
        except httpx.HTTPError as e:
            raise PayPalError(f"PayPal token request failed: {e}") from e
        if r.status_code != 200:
            raise PayPalError("PayPal authentication failed", r.status_code)
        data = r.json()
        self._token = data["access_token"]
        self._token_expires = time.monotonic() + int(data.get("expires_in", 300)) - 60
        return self._token

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        token = await self.access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        if request_id:
            # PayPal deduplicates retried POSTs with the same request id
            headers["PayPal-Request-Id"] = request_id
        try:
            async with self._client() as client:
                r = await client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise PayPalError(f"PayPal request failed: {e}") from e

        data = r.json() if r.content else {}
        if r.status_code >= 400:
            message = data.get("message") or data.get("name") or r.text
            logger.error("PayPal %s %s -> %s: %s", method, path, r.status_code, message)
            raise PayPalError(message, r.status_code, data.get("debug_id"))
        return data

    async def create_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """PayPal order for a storefront order; returns the PayPal response (id, status, links)."""
        currency = order.get("currency") or self.cfg.currency
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": order["order_number"],
                    "custom_id": order["id"],
                    "invoice_id": order["order_number"],
                    "description": f"Order {order['order_number']}",
                    "amount": {"currency_code": currency, "value": str(order["total"])},
                }
            ],
            "application_context": {
                "brand_name": self.cfg.email_from_name,
                "shipping_preference": "SET_PROVIDED_ADDRESS",
                "user_action": "PAY_NOW",
            },
        }
        return await self._request("POST", "/v2/checkout/orders", body, request_id=f"create-{order['id']}")

    async def capture_order(self, paypal_order_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/v2/checkout/orders/{paypal_order_id}/capture",
            {},
            request_id=f"capture-{paypal_order_id}",
        )


def approve_link(paypal_order: Dict[str, Any]) -> Optional[str]:
    for link in paypal_order.get("links") or []:
        if link.get("rel") in ("approve", "payer-action"):
            return link.get("href")
    return None


def capture_details(result: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]:
    """(capture id, capture status, amount, currency) from a capture response."""
    for unit in result.get("purchase_units") or []:
        for cap in (unit.get("payments") or {}).get("captures") or []:
            amount = cap.get("amount") or {}
            return cap.get("id"), cap.get("status"), amount.get("value"), amount.get("currency_code")
    return None, result.get("status"), None, None
