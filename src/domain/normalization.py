from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Literal


CallProvider = Literal["retell", "vapi"]
CallPhase = Literal["started", "ended", "analyzed"]
CallDirection = Literal["inbound", "outbound"]
CanonicalCallStatus = Literal["in_progress", "completed", "failed", "busy", "no_answer", "voicemail"]
Speaker = Literal["agent", "caller"]

RETELL_CALL_STATUS_MAP: dict[str, CanonicalCallStatus] = {
    "ended": "completed",
    "error": "failed",
    "busy": "busy",
    "no-answer": "no_answer",
    "voicemail": "voicemail",
}

VAPI_ENDED_REASON_MAP: dict[str, CanonicalCallStatus] = {
    "customer-ended-call": "completed",
    "assistant-ended-call": "completed",
    "customer-did-not-answer": "no_answer",
    "customer-busy": "busy",
    "voicemail": "voicemail",
    "error": "failed",
    "silence-timeout": "completed",
    "max-duration-reached": "completed",
}

RETELL_PHASE_MAP: dict[str, CallPhase] = {
    "call_started": "started",
    "call_ended": "ended",
    "call_analyzed": "analyzed",
}


def _key(value: Any) -> str:
    return str(value).strip().lower() if value is not None else ""


# Unknown statuses fall back to "completed" so an unfamiliar value never
# fails the webhook acknowledgment.
def normalize_retell_call_status(value: str | None) -> CanonicalCallStatus:
    return RETELL_CALL_STATUS_MAP.get(_key(value), "completed")


def normalize_vapi_ended_reason(value: str | None) -> CanonicalCallStatus:
    return VAPI_ENDED_REASON_MAP.get(_key(value), "completed")


def normalize_retell_phase(event_type: str | None) -> CallPhase | None:
    return RETELL_PHASE_MAP.get(_key(event_type))


def normalize_vapi_phase(message_type: str | None, status: str | None = None) -> CallPhase | None:
    key = _key(message_type)
    if key == "status-update":
        return "started" if _key(status) == "in-progress" else None
    if key == "end-of-call-report":
        return "ended"
    return None


def normalize_call_direction(value: str | None) -> CallDirection:
    if _key(value) in {"outbound", "outboundphonecall"}:
        return "outbound"
    return "inbound"


def normalize_speaker(role: str | None) -> Speaker | None:
    """Tool, function and system turns are not part of the spoken transcript."""
    key = _key(role)
    if key in {"agent", "assistant", "bot"}:
        return "agent"
    if key in {"user", "customer"}:
        return "caller"
    return None


def epoch_ms_to_iso(value: float | None) -> str | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def derive_duration_seconds(
    explicit_seconds: float | None,
    started_at: str | None,
    ended_at: str | None,
) -> int:
    """
    Whole-second call duration.

    An explicit provider duration wins; otherwise the start/end difference is
    used. Missing or negative results collapse to 0.
    """
    # Non-finite values (JSON 1e400, NaN) count as missing.
    if explicit_seconds is not None and math.isfinite(explicit_seconds):
        return max(0, round_half_up(float(explicit_seconds)))
    start = parse_timestamp(started_at)
    end = parse_timestamp(ended_at)
    if start is None or end is None:
        return 0
    return max(0, round_half_up((end - start).total_seconds()))
