from src.auth.dependencies import require_internal_token
from src.auth.signatures import (
    compute_hmac_sha256,
    unconfigured_webhook_secrets,
    verify_retell_signature,
    verify_token,
    verify_vapi_signature,
)

__all__ = [
    "require_internal_token",
    "compute_hmac_sha256",
    "unconfigured_webhook_secrets",
    "verify_retell_signature",
    "verify_token",
    "verify_vapi_signature",
]
