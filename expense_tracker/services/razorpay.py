"""Minimal Razorpay REST client covering customer and subscription creation."""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from expense_tracker.errors import ConfigError, ProviderError


class RazorpayClient:
    BASE_URL = "https://api.razorpay.com"

    def __init__(
        self,
        key_id: str | None,
        key_secret: str | None,
        base_url: str = BASE_URL,
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def client(self) -> httpx.Client:
        if not self.configured:
            raise ConfigError("Payment provider credentials not configured", code="provider_not_configured")
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        return self._client

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def create_customer(self, name: str, email: str) -> Mapping[str, Any]:
        # fail_existing=0 returns the existing customer for a known email instead of erroring.
        payload = {"name": name, "email": email, "fail_existing": "0"}
        return self._request("POST", "/v1/customers", payload)

    def create_subscription(
        self,
        plan_id: str,
        customer_id: str,
        total_count: int,
        customer_notify: int = 1,
    ) -> Mapping[str, Any]:
        payload = {
            "plan_id": plan_id,
            "customer_id": customer_id,
            "total_count": total_count,
            "customer_notify": customer_notify,
        }
        return self._request("POST", "/v1/subscriptions", payload)

    def _request(self, method: str, path: str, payload: Mapping[str, object] | None) -> Mapping[str, Any]:
        try:
            response = self.client.request(method, path, json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderError("Payment provider request timed out", code="provider_timeout") from exc
        except httpx.HTTPError as exc:
            raise ProviderError("Payment provider request failed", code="provider_network_error") from exc

        if response.status_code >= 400:
            detail: Any
            try:
                detail = response.json().get("error", {}).get("description")
            except Exception:
                detail = response.text
            raise ProviderError(f"Payment provider returned {response.status_code}: {detail}")

        body = response.json()
        if not isinstance(body, dict) or not body.get("id"):
            raise ProviderError("Payment provider returned an unexpected response")
        return body
