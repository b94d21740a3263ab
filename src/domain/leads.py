from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from src.domain.call_events import CallEvent


LeadStatusChange = Literal["appointment_set", "contacted"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def lead_status_change_for(event: CallEvent) -> LeadStatusChange | None:
    if not event.is_terminal:
        return None
    if event.appointment_set:
        return "appointment_set"
    if event.phase == "ended" and event.status == "completed":
        return "contacted"
    return None


def mark_appointment_set(
    supabase_client: Any,
    *,
    lead_id: str,
    organization_id: str | None = None,
    notes: str | None = None,
) -> None:
    fields: dict[str, Any] = {"lead_status": "appointment_set"}
    if notes is not None:
        fields["notes"] = notes
    query = supabase_client.table("leads").update(fields).eq("id", lead_id)
    if organization_id:
        query = query.eq("organization_id", organization_id)
    query.execute()


def mark_contacted(supabase_client: Any, *, lead_id: str) -> None:
    # Never moves a lead back from appointment_set.
    (
        supabase_client.table("leads")
        .update({"lead_status": "contacted", "last_call_date": _now_iso()})
        .eq("id", lead_id)
        .neq("lead_status", "appointment_set")
        .execute()
    )


def apply_lead_status_side_effect(
    *,
    supabase_client: Any,
    event: CallEvent,
    lead_id: str | None,
) -> LeadStatusChange | None:
    change = lead_status_change_for(event)
    if not change or not lead_id:
        return None
    if change == "appointment_set":
        mark_appointment_set(supabase_client, lead_id=lead_id)
    else:
        mark_contacted(supabase_client, lead_id=lead_id)
    return change


def stamp_last_call_date(supabase_client: Any, *, lead_id: str) -> None:
    supabase_client.table("leads").update({"last_call_date": _now_iso()}).eq("id", lead_id).execute()
