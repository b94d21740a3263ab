from __future__ import annotations

from typing import Any

import httpx


VAPI_API_BASE = "https://api.vapi.ai"


class VapiProviderError(Exception):
    """Provider-level exception for Vapi integration failures."""

    @property
    def category(self) -> str:
        message = str(self).lower()
        if "connectivity error" in message or "http 429" in message or "http 5" in message:
            return "transient"
        if (
            "missing vapi api key" in message
            or "invalid vapi api key" in message
            or "http 4" in message
            or "unexpected vapi" in message
        ):
            return "terminal"
        return "unknown"

    @property
    def retryable(self) -> bool:
        return self.category == "transient"


def _headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body
        if isinstance(message, list):
            message = "; ".join(str(item) for item in message)
        return str(message)[:200]
    return str(body)[:200]


def create_phone_call(
    api_key: str,
    *,
    assistant_id: str,
    customer_number: str,
    phone_number_id: str | None,
    metadata: dict[str, Any] | None = None,
    base_url: str | None = None,
    timeout_seconds: float = 15.0,
) -> dict[str, Any]:
    if not api_key:
        raise VapiProviderError("Missing Vapi API key")

    payload: dict[str, Any] = {
        "assistantId": assistant_id,
        "customer": {"number": customer_number},
        "phoneNumberId": phone_number_id,
    }
    if metadata:
        payload["metadata"] = metadata
    url = f"{(base_url or VAPI_API_BASE).rstrip('/')}/call/phone"

    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            response = client.post(url, headers=_headers(api_key), json=payload)
    except httpx.HTTPError as exc:
        raise VapiProviderError(f"Vapi connectivity error: {exc}") from exc

    if response.status_code in {401, 403}:
        raise VapiProviderError("Invalid Vapi API key")
    if response.status_code >= 400:
        raise VapiProviderError(
            f"Vapi API returned HTTP {response.status_code}: {_error_message(response)}"
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise VapiProviderError("Unexpected Vapi non-JSON response") from exc
    if not isinstance(data, dict) or not data.get("id"):
        raise VapiProviderError("Unexpected Vapi create call response shape")
    return data
