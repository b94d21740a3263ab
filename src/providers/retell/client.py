from __future__ import annotations

from typing import Any

import httpx


RETELL_API_BASE = "https://api.retellai.com"


class RetellProviderError(Exception):
    """Provider-level exception for Retell integration failures."""

    @property
    def category(self) -> str:
        message = str(self).lower()
        if "connectivity error" in message or "http 429" in message or "http 5" in message:
            return "transient"
        if (
            "missing retell api key" in message
            or "invalid retell api key" in message
            or "http 4" in message
            or "unexpected retell" in message
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
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]


def create_phone_call(
    api_key: str,
    *,
    agent_id: str,
    to_number: str,
    from_number: str | None,
    metadata: dict[str, Any] | None = None,
    base_url: str | None = None,
    timeout_seconds: float = 15.0,
) -> dict[str, Any]:
    if not api_key:
        raise RetellProviderError("Missing Retell API key")

    payload: dict[str, Any] = {
        "agent_id": agent_id,
        "to_number": to_number,
        "from_number": from_number,
    }
    if metadata:
        payload["metadata"] = metadata
    url = f"{(base_url or RETELL_API_BASE).rstrip('/')}/v2/create-phone-call"

    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            response = client.post(url, headers=_headers(api_key), json=payload)
    except httpx.HTTPError as exc:
        raise RetellProviderError(f"Retell connectivity error: {exc}") from exc

    if response.status_code in {401, 403}:
        raise RetellProviderError("Invalid Retell API key")
    if response.status_code >= 400:
        raise RetellProviderError(
            f"Retell API returned HTTP {response.status_code}: {_error_message(response)}"
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise RetellProviderError("Unexpected Retell non-JSON response") from exc
    if not isinstance(data, dict) or not data.get("call_id"):
        raise RetellProviderError("Unexpected Retell create call response shape")
    return data
