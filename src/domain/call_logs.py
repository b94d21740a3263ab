from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from src.domain.call_events import CallEvent
from src.domain.identity import CallIdentity


CallLogWriteResult = Literal["upserted", "updated", "not_found"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def started_fields(event: CallEvent, identity: CallIdentity) -> dict[str, Any]:
    row = {
        "provider_call_id": event.provider_call_id,
        "organization_id": identity.organization_id,
        "campaign_id": identity.campaign_id,
        "lead_id": identity.lead_id,
        "call_type": event.direction,
        "call_status": "in_progress",
        "phone_number": event.phone_number or "",
        "from_number": event.from_number,
        "provider": event.provider,
    }
    # Left to the column default when absent so a redelivery writes identical values.
    if event.started_at:
        row["started_at"] = event.started_at
    return row


def analysis_fields(event: CallEvent) -> dict[str, Any]:
    segments = None
    if event.transcript_segments is not None:
        segments = [segment.as_dict() for segment in event.transcript_segments]
    return _drop_none(
        {
            "transcript": event.transcript,
            "transcript_segments": segments,
            "call_summary": event.summary,
            "call_sentiment": event.sentiment,
            "appointment_set": event.appointment_set,
            "key_topics": event.key_topics,
        }
    )


def ended_fields(event: CallEvent) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "call_status": event.status,
        "duration_seconds": event.duration_seconds,
        "ended_at": event.ended_at or _now_iso(),
    }
    fields.update(
        _drop_none(
            {
                "recording_url": event.recording_url,
                "cost_amount": event.cost_amount,
            }
        )
    )
    fields.update(analysis_fields(event))
    return fields


def _update_by_call_id(supabase_client: Any, provider_call_id: str, fields: dict[str, Any]) -> CallLogWriteResult:
    if not fields:
        return "not_found"
    result = (
        supabase_client.table("call_logs")
        .update(fields)
        .eq("provider_call_id", provider_call_id)
        .execute()
    )
    return "updated" if result.data else "not_found"


def apply_call_event(
    *,
    supabase_client: Any,
    event: CallEvent,
    identity: CallIdentity,
) -> CallLogWriteResult:
    """
    Write one event onto its call_logs row, keyed by provider_call_id.

    ``started`` upserts. ``ended`` and ``analyzed`` are partial updates that
    match zero rows when the start was never seen; they never create a row.
    """
    if event.phase == "started":
        supabase_client.table("call_logs").upsert(
            started_fields(event, identity),
            on_conflict="provider_call_id",
        ).execute()
        return "upserted"
    if event.phase == "ended":
        return _update_by_call_id(supabase_client, event.provider_call_id, ended_fields(event))
    return _update_by_call_id(supabase_client, event.provider_call_id, analysis_fields(event))


def record_initiated_call(
    *,
    supabase_client: Any,
    provider_call_id: str,
    provider: str,
    organization_id: str,
    phone_number: str,
    from_number: str | None,
    campaign_id: str | None = None,
    lead_id: str | None = None,
) -> None:
    # A call_started webhook may already have created the row; keep it.
    supabase_client.table("call_logs").upsert(
        {
            "provider_call_id": provider_call_id,
            "organization_id": organization_id,
            "campaign_id": campaign_id,
            "lead_id": lead_id,
            "call_type": "outbound",
            "call_status": "initiated",
            "phone_number": phone_number,
            "from_number": from_number,
            "provider": provider,
        },
        on_conflict="provider_call_id",
        ignore_duplicates=True,
    ).execute()
