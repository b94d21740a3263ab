from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from src.domain.call_events import CallEvent
from src.observability import incr_metric, log_event


PHONE_MATCH_MODES = {"exact", "normalized"}

_AGENT_ID_COLUMNS = {
    "retell": "retell_agent_id",
    "vapi": "vapi_assistant_id",
}


@dataclass
class CallIdentity:
    organization_id: str | None
    campaign_id: str | None = None
    lead_id: str | None = None
    organization_source: str | None = None  # metadata | agent_settings

    @property
    def is_orphan(self) -> bool:
        return not self.organization_id


def _first_present(mapping: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def extract_organization_id(metadata: dict[str, Any] | None) -> str | None:
    return _first_present(metadata or {}, "organization_id", "organizationId", "org_id")


def extract_campaign_id(metadata: dict[str, Any] | None) -> str | None:
    return _first_present(metadata or {}, "campaign_id", "campaignId")


def extract_lead_id(metadata: dict[str, Any] | None) -> str | None:
    return _first_present(metadata or {}, "lead_id", "leadId")


def normalize_phone_digits(phone: str) -> str:
    """Strip formatting, keeping a leading '+'. No country-code inference."""
    value = phone.strip()
    digits = re.sub(r"\D", "", value)
    return f"+{digits}" if value.startswith("+") else digits


def phone_lookup_candidates(phone: str | None, mode: str = "exact") -> list[str]:
    """
    Values tried, in order, when matching a caller number against leads.phone_number.

    ``exact`` uses the number exactly as the provider sent it. ``normalized``
    additionally tries the digits-only form, which only helps when leads were
    stored in that same form.
    """
    if not phone:
        return []
    candidates = [phone]
    if mode == "normalized":
        digits = normalize_phone_digits(phone)
        if digits and digits not in candidates:
            candidates.append(digits)
    return candidates


def _organization_for_agent(supabase_client: Any, provider: str, agent_id: str) -> str | None:
    column = _AGENT_ID_COLUMNS.get(provider)
    if not column:
        return None
    result = (
        supabase_client.table("agent_settings")
        .select("organization_id")
        .eq(column, agent_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0].get("organization_id")


def find_lead_by_phone(
    supabase_client: Any,
    *,
    organization_id: str,
    phone_number: str | None,
    mode: str = "exact",
) -> dict[str, Any] | None:
    for candidate in phone_lookup_candidates(phone_number, mode):
        result = (
            supabase_client.table("leads")
            .select("id, campaign_id")
            .eq("organization_id", organization_id)
            .eq("phone_number", candidate)
            .limit(2)
            .execute()
        )
        rows = result.data or []
        if len(rows) == 1:
            return rows[0]
        if len(rows) > 1:
            # Same number on several leads: leave the call unlinked rather than guess.
            incr_metric("identity.lead_lookup.ambiguous")
            log_event(
                "lead_lookup_ambiguous",
                level=logging.WARNING,
                organization_id=organization_id,
            )
            return None
    return None


def resolve_identity(
    *,
    supabase_client: Any,
    event: CallEvent,
    phone_match_mode: str = "exact",
) -> CallIdentity:
    organization_id = extract_organization_id(event.metadata)
    source = "metadata" if organization_id else None
    if not organization_id and event.agent_or_assistant_id:
        organization_id = _organization_for_agent(
            supabase_client, event.provider, event.agent_or_assistant_id
        )
        source = "agent_settings" if organization_id else None

    if not organization_id:
        return CallIdentity(organization_id=None)

    campaign_id = extract_campaign_id(event.metadata)
    lead_id = extract_lead_id(event.metadata)
    if not lead_id and event.phone_number:
        lead = find_lead_by_phone(
            supabase_client,
            organization_id=organization_id,
            phone_number=event.phone_number,
            mode=phone_match_mode if phone_match_mode in PHONE_MATCH_MODES else "exact",
        )
        if lead:
            lead_id = lead.get("id")
            campaign_id = campaign_id or lead.get("campaign_id")

    return CallIdentity(
        organization_id=organization_id,
        campaign_id=campaign_id,
        lead_id=lead_id,
        organization_source=source,
    )
