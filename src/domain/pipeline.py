from __future__ import annotations

import logging
from typing import Any

from src.domain.call_events import CallEvent
from src.domain.call_logs import apply_call_event
from src.domain.identity import resolve_identity
from src.domain.leads import apply_lead_status_side_effect
from src.domain.usage import accumulate_usage
from src.observability import incr_metric, log_event


ORPHAN_WARNING = "No organization ID"


def process_call_event(
    *,
    supabase_client: Any,
    event: CallEvent,
    phone_match_mode: str = "exact",
    request_id: str | None = None,
) -> dict[str, Any]:
    """
    Resolve, persist and account for one normalized call event.

    Returns the webhook acknowledgment body. Store errors propagate so the
    caller can answer 500 and let the provider redeliver.
    """
    identity = resolve_identity(
        supabase_client=supabase_client,
        event=event,
        phone_match_mode=phone_match_mode,
    )
    if identity.is_orphan:
        incr_metric("webhook.events.orphaned", provider=event.provider)
        log_event(
            "call_event_orphaned",
            level=logging.WARNING,
            request_id=request_id,
            provider=event.provider,
            provider_call_id=event.provider_call_id,
            phase=event.phase,
            has_agent_id=bool(event.agent_or_assistant_id),
        )
        return {"received": True, "warning": ORPHAN_WARNING}

    write_result = apply_call_event(supabase_client=supabase_client, event=event, identity=identity)
    if write_result == "not_found":
        incr_metric("call_logs.update.unmatched", provider=event.provider, phase=event.phase)
        log_event(
            "call_log_update_unmatched",
            level=logging.WARNING,
            request_id=request_id,
            provider=event.provider,
            provider_call_id=event.provider_call_id,
            phase=event.phase,
        )

    usage_recorded = False
    if event.phase == "ended":
        usage_recorded = accumulate_usage(
            supabase_client=supabase_client,
            organization_id=identity.organization_id,
            provider=event.provider,
            duration_seconds=event.duration_seconds,
            cost_amount=event.cost_amount,
            was_answered=event.status == "completed",
        )

    lead_change = None
    try:
        lead_change = apply_lead_status_side_effect(
            supabase_client=supabase_client,
            event=event,
            lead_id=identity.lead_id,
        )
    except Exception as exc:
        incr_metric("leads.status_update.failed", provider=event.provider)
        log_event(
            "lead_status_update_failed",
            level=logging.WARNING,
            request_id=request_id,
            provider=event.provider,
            provider_call_id=event.provider_call_id,
            lead_id=identity.lead_id,
            error=str(exc),
        )

    log_event(
        "call_event_processed",
        request_id=request_id,
        provider=event.provider,
        provider_call_id=event.provider_call_id,
        phase=event.phase,
        status=event.status,
        organization_source=identity.organization_source,
        lead_linked=bool(identity.lead_id),
        call_log_result=write_result,
        usage_recorded=usage_recorded,
        lead_status_change=lead_change,
    )
    return {"received": True}
