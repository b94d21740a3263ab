"""Webhook signature and shared-token verification.

All comparisons are constant time. Callers decide what an absent secret
means; the webhook routers treat it as "verification disabled" so local and
staging deployments can run without provider secrets.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any


VAPI_SIGNATURE_PREFIX = "sha256="


def compute_hmac_sha256(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_retell_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Retell sends the bare hex digest of the raw body."""
    if not signature:
        return False
    expected = compute_hmac_sha256(raw_body, secret)
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def verify_vapi_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Vapi prefixes the hex digest with ``sha256=``; the prefix is part of the comparison."""
    if not signature:
        return False
    expected = f"{VAPI_SIGNATURE_PREFIX}{compute_hmac_sha256(raw_body, secret)}"
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def verify_token(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def unconfigured_webhook_secrets(config: Any) -> list[str]:
    missing: list[str] = []
    for name in ("retell_webhook_secret", "vapi_webhook_secret", "internal_api_token"):
        if not getattr(config, name, None):
            missing.append(name)
    return missing
