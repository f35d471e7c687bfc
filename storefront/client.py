import os
from typing import Any, Dict, Optional

import httpx
import logging

from bakery.schemas import OrderCreate, OrderStatus, VerifyPaymentRequest

logger = logging.getLogger(__name__)


class BakeryClient:
    """Async client for the Perfect Bakery REST API.

    Every method returns the decoded JSON envelope (``{"success": ...}``)
    with the HTTP status added under ``status_code``, so collaborator-reported
    failures (400, 401, 503 ...) come back as data. Transport failures and
    non-JSON responses raise ``httpx.HTTPError``.

    Environment variables:
    - API_BASE_URL: base URL, e.g., http://localhost:8000/api
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: float = 15,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("API_BASE_URL") or "").rstrip("/")
        self.timeout_seconds = timeout_seconds
        if not self.base_url:
            raise ValueError("API_BASE_URL is required")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout_seconds,
            transport=transport,
        )
        self.set_token(token)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - close the client."""
        await self.close()

    async def close(self):
        """Explicitly close the HTTP client."""
        await self._client.aclose()

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = await self._client.request(method, url, **kwargs)
        try:
            data = response.json()
        except ValueError:
            # Not one of our envelopes (proxy error page, HTML 502, ...)
            response.raise_for_status()
            raise httpx.DecodingError(f"Invalid JSON from {url}", request=response.request)

        if not isinstance(data, dict):
            raise httpx.DecodingError(f"Unexpected payload from {url}", request=response.request)

        if response.status_code >= 400:
            logger.debug("API %s %s -> %s: %s", method, url, response.status_code, data.get("message"))
        data["status_code"] = response.status_code
        return data

    # ---------- Auth ----------

    async def register(self, first_name: str, email: str, password: str, last_name: str = "", phone: str = "") -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/auth/register",
            json={
                "first_name": first_name,
                "last_name": last_name,
                "email": email,
                "phone": phone,
                "password": password,
            },
        )

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        return await self._request("POST", "/auth/login", json={"email": email, "password": password})

    async def me(self) -> Dict[str, Any]:
        return await self._request("GET", "/auth/me")

    # ---------- Orders ----------

    async def create_order(self, payload: OrderCreate) -> Dict[str, Any]:
        return await self._request("POST", "/orders", json=payload.model_dump(mode="json"))

    async def get_my_orders(self) -> Dict[str, Any]:
        return await self._request("GET", "/orders/my-orders")

    async def get_order(self, order_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")

    async def cancel_order(self, order_id: int) -> Dict[str, Any]:
        return await self._request("PUT", f"/orders/{order_id}/cancel")

    async def update_order_status(self, order_id: int, status: OrderStatus) -> Dict[str, Any]:
        """Admin only."""
        return await self._request("PUT", f"/orders/{order_id}/status", json={"status": status.value})

    # ---------- Payments ----------

    async def get_payment_gateway_status(self) -> Dict[str, Any]:
        return await self._request("GET", "/payments/status")

    async def create_payment_session(self, amount: float, order_id: int, currency: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"amount": amount, "order_id": order_id}
        if currency:
            body["currency"] = currency
        return await self._request("POST", "/payments/create-order", json=body)

    async def get_payment_session(self, session_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/sessions/{session_id}")

    async def verify_payment(self, request: VerifyPaymentRequest) -> Dict[str, Any]:
        return await self._request("POST", "/payments/verify", json=request.model_dump(mode="json"))

    async def get_payment_details(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def refund_payment(self, payment_id: str, amount: Optional[float] = None, reason: Optional[str] = None) -> Dict[str, Any]:
        """Admin only. Omit amount for a full refund."""
        body: Dict[str, Any] = {}
        if amount is not None:
            body["amount"] = amount
        if reason:
            body["reason"] = reason
        return await self._request("POST", f"/payments/{payment_id}/refund", json=body)
