from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from src.config import settings
from src.db import supabase
from src.domain.call_logs import record_initiated_call
from src.domain.leads import stamp_last_call_date
from src.domain.provider_errors import provider_error_detail, provider_error_http_status
from src.models.calls import CallInitiateRequest, CallInitiateResponse
from src.observability import incr_metric, log_event
from src.providers.retell.client import RetellProviderError
from src.providers.retell.client import create_phone_call as retell_create_phone_call
from src.providers.vapi.client import VapiProviderError
from src.providers.vapi.client import create_phone_call as vapi_create_phone_call


router = APIRouter(prefix="/api/calls", tags=["calls"])

SUPPORTED_PROVIDERS = {"retell", "vapi"}


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _get_outbound_agent(organization_id: str, agent_id: str | None) -> dict[str, Any] | None:
    query = supabase.table("agent_settings").select("*").eq("organization_id", organization_id)
    if agent_id:
        query = query.eq("id", agent_id)
    else:
        query = query.eq("agent_role", "outbound_lead").eq("is_enabled", True)
    result = query.limit(1).execute()
    return result.data[0] if result.data else None


def _get_provider_api_key(organization_id: str, provider: str) -> str | None:
    result = (
        supabase.table("provider_settings")
        .select("api_key")
        .eq("organization_id", organization_id)
        .eq("provider", provider)
        .limit(1)
        .execute()
    )
    if result.data and result.data[0].get("api_key"):
        return result.data[0]["api_key"]
    return settings.retell_api_key if provider == "retell" else settings.vapi_api_key


@router.post("/initiate", response_model=CallInitiateResponse)
async def initiate_call(data: CallInitiateRequest, request: Request):
    """Start an outbound call through the organization's configured voice agent."""
    request_id = getattr(request.state, "request_id", None)
    if not data.organization_id or not data.phone_number:
        raise _bad_request("Missing required fields")

    agent = _get_outbound_agent(data.organization_id, data.agent_id)
    if not agent:
        raise _bad_request("No active agent found")

    provider = agent.get("provider") or "retell"
    if provider not in SUPPORTED_PROVIDERS:
        raise _bad_request(f"Unsupported provider: {provider}")

    api_key = _get_provider_api_key(data.organization_id, provider)
    if not api_key:
        raise _bad_request("Provider not configured")

    from_number = data.from_number or agent.get("phone_number")
    metadata = {
        "organization_id": data.organization_id,
        "campaign_id": data.campaign_id,
        "lead_id": data.lead_id,
    }

    try:
        if provider == "retell":
            created = retell_create_phone_call(
                api_key,
                agent_id=agent.get("retell_agent_id"),
                to_number=data.phone_number,
                from_number=from_number,
                metadata=metadata,
                base_url=settings.retell_api_base,
                timeout_seconds=settings.provider_request_timeout_seconds,
            )
            call_id = str(created["call_id"])
        else:
            created = vapi_create_phone_call(
                api_key,
                assistant_id=agent.get("vapi_assistant_id"),
                customer_number=data.phone_number,
                phone_number_id=from_number,
                metadata=metadata,
                base_url=settings.vapi_api_base,
                timeout_seconds=settings.provider_request_timeout_seconds,
            )
            call_id = str(created["id"])
    except (RetellProviderError, VapiProviderError) as exc:
        incr_metric("calls.initiate.failed", provider=provider, category=exc.category)
        log_event(
            "call_initiate_failed",
            level=logging.WARNING,
            request_id=request_id,
            provider=provider,
            organization_id=data.organization_id,
            category=exc.category,
            error=str(exc),
        )
        raise HTTPException(
            status_code=provider_error_http_status(exc),
            detail=provider_error_detail(provider=provider, operation="create_phone_call", exc=exc),
        ) from exc

    # The provider has already placed the call; a store failure must still hand back its id.
    try:
        record_initiated_call(
            supabase_client=supabase,
            provider_call_id=call_id,
            provider=provider,
            organization_id=data.organization_id,
            phone_number=data.phone_number,
            from_number=from_number,
            campaign_id=data.campaign_id,
            lead_id=data.lead_id,
        )
        if data.lead_id:
            stamp_last_call_date(supabase, lead_id=data.lead_id)
    except Exception as exc:
        incr_metric("calls.initiate.record_failed", provider=provider)
        log_event(
            "call_initiate_record_failed",
            level=logging.ERROR,
            request_id=request_id,
            provider=provider,
            provider_call_id=call_id,
            organization_id=data.organization_id,
            error=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "type": "call_record_failed",
                "provider": provider,
                "call_id": call_id,
                "message": str(exc),
            },
        ) from exc

    incr_metric("calls.initiate.succeeded", provider=provider)
    log_event(
        "call_initiated",
        request_id=request_id,
        provider=provider,
        provider_call_id=call_id,
        organization_id=data.organization_id,
        lead_id=data.lead_id,
    )
    return CallInitiateResponse(success=True, call_id=call_id, provider=provider)
