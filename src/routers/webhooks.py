from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, ValidationError

from src.auth.signatures import verify_retell_signature, verify_token, verify_vapi_signature
from src.config import settings
from src.db import supabase
from src.domain.call_events import CallEvent, normalize_retell_event, normalize_vapi_event
from src.domain.identity import find_lead_by_phone
from src.domain.leads import mark_appointment_set
from src.domain.pipeline import process_call_event
from src.models.retell import RetellWebhookPayload
from src.models.vapi import VapiWebhookPayload
from src.models.webhooks import AutomationWebhookPayload, AutomationWebhookResponse, CallWebhookAck
from src.observability import incr_metric, log_event


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _parse_json_or_raise(raw_body: bytes) -> Any:
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc


def _verify_signature_or_raise(
    *,
    provider: str,
    raw_body: bytes,
    signature: str | None,
    secret: str | None,
    verifier: Callable[[bytes, str | None, str], bool],
    request_id: str | None,
) -> None:
    # No secret configured: verification disabled (warned about at startup).
    if not secret:
        incr_metric("webhook.signature.skipped", provider=provider)
        return
    if verifier(raw_body, signature, secret):
        incr_metric("webhook.signature.verified", provider=provider)
        return
    reason = "missing_signature" if not signature else "invalid_signature"
    incr_metric("webhook.events.rejected", provider=provider, reason=reason)
    log_event(
        "webhook_signature_rejected",
        level=logging.WARNING,
        request_id=request_id,
        provider=provider,
        reason=reason,
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "type": "webhook_signature_invalid",
            "provider": provider,
            "reason": reason,
            "message": "Invalid signature",
        },
    )


def _processing_failed(*, provider: str, request_id: str | None, exc: Exception, **fields: Any) -> HTTPException:
    incr_metric("webhook.events.failed", provider=provider)
    log_event(
        "webhook_failed",
        level=logging.ERROR,
        request_id=request_id,
        provider=provider,
        error=str(exc),
        **fields,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "type": "webhook_processing_failed",
            "provider": provider,
            "message": str(exc),
        },
    )


async def _ingest_call_webhook(
    request: Request,
    *,
    provider: str,
    signature: str | None,
    secret: str | None,
    verifier: Callable[[bytes, str | None, str], bool],
    payload_model: type[PayloadT],
    normalizer: Callable[[PayloadT], CallEvent | None],
) -> dict[str, Any]:
    req_id = _request_id(request)
    raw_body = await request.body()
    incr_metric("webhook.events.received", provider=provider)
    _verify_signature_or_raise(
        provider=provider,
        raw_body=raw_body,
        signature=signature,
        secret=secret,
        verifier=verifier,
        request_id=req_id,
    )
    parsed = _parse_json_or_raise(raw_body)

    try:
        payload = payload_model.model_validate(parsed)
    except ValidationError as exc:
        incr_metric("webhook.events.malformed", provider=provider)
        log_event(
            "webhook_payload_malformed",
            level=logging.WARNING,
            request_id=req_id,
            provider=provider,
            error_count=exc.error_count(),
        )
        return {"received": True, "note": "No call data"}

    try:
        event = normalizer(payload)
    except Exception as exc:
        raise _processing_failed(provider=provider, request_id=req_id, exc=exc) from exc
    if event is None:
        incr_metric("webhook.events.ignored", provider=provider)
        log_event("webhook_event_ignored", request_id=req_id, provider=provider)
        return {"received": True, "note": "No call data"}

    log_event(
        "webhook_received",
        request_id=req_id,
        provider=provider,
        phase=event.phase,
        provider_call_id=event.provider_call_id,
    )
    try:
        ack = process_call_event(
            supabase_client=supabase,
            event=event,
            phone_match_mode=settings.lead_phone_match_mode,
            request_id=req_id,
        )
    except HTTPException:
        raise
    except Exception as exc:
        raise _processing_failed(
            provider=provider,
            request_id=req_id,
            exc=exc,
            phase=event.phase,
            provider_call_id=event.provider_call_id,
        ) from exc

    incr_metric("webhook.events.processed", provider=provider, phase=event.phase)
    return ack


@router.post("/retell", response_model=CallWebhookAck, response_model_exclude_none=True)
async def ingest_retell_webhook(request: Request):
    return await _ingest_call_webhook(
        request,
        provider="retell",
        signature=request.headers.get("X-Retell-Signature"),
        secret=settings.retell_webhook_secret,
        verifier=verify_retell_signature,
        payload_model=RetellWebhookPayload,
        normalizer=normalize_retell_event,
    )


@router.post("/vapi", response_model=CallWebhookAck, response_model_exclude_none=True)
async def ingest_vapi_webhook(request: Request):
    return await _ingest_call_webhook(
        request,
        provider="vapi",
        signature=request.headers.get("X-Vapi-Signature"),
        secret=settings.vapi_webhook_secret,
        verifier=verify_vapi_signature,
        payload_model=VapiWebhookPayload,
        normalizer=normalize_vapi_event,
    )


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _resolve_automation_token(token: str) -> dict[str, Any] | None:
    result = (
        supabase.table("organization_webhook_tokens")
        .select("organization_id, token_name, token_value, is_active")
        .eq("token_value", token)
        .eq("is_active", True)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    record = result.data[0]
    if not verify_token(token, record.get("token_value")):
        return None
    return record


def _handle_lead_created(org_id: str, workflow: str, data: dict[str, Any]) -> dict[str, Any]:
    if not data.get("phone_number"):
        raise _bad_request("Phone number is required")
    created = (
        supabase.table("leads")
        .insert(
            {
                "organization_id": org_id,
                "first_name": data.get("first_name"),
                "last_name": data.get("last_name"),
                "email": data.get("email"),
                "phone_number": data["phone_number"],
                "company": data.get("company"),
                "campaign_id": data.get("campaign_id"),
                "lead_source": data.get("source") or f"n8n:{workflow}",
                "lead_status": "new",
            }
        )
        .execute()
    )
    lead_id = created.data[0]["id"] if created.data else None
    return {"success": True, "lead_id": lead_id, "workflow": workflow}


def _handle_lead_updated(org_id: str, workflow: str, data: dict[str, Any]) -> dict[str, Any]:
    lead_id = data.get("lead_id")
    if not lead_id:
        raise _bad_request("Lead ID is required")
    updates = {k: v for k, v in data.items() if k not in {"lead_id", "id", "organization_id"}}
    if updates:
        supabase.table("leads").update(updates).eq("id", lead_id).eq("organization_id", org_id).execute()
    return {"success": True}


def _handle_call_completed(org_id: str, workflow: str, data: dict[str, Any]) -> dict[str, Any]:
    phone_number = data.get("phone_number")
    if not phone_number:
        raise _bad_request("Phone number is required")
    lead = find_lead_by_phone(
        supabase,
        organization_id=org_id,
        phone_number=phone_number,
        mode=settings.lead_phone_match_mode,
    )
    appointment_set = bool(data.get("appointment_set"))
    supabase.table("call_logs").insert(
        {
            "organization_id": org_id,
            "campaign_id": data.get("campaign_id"),
            "lead_id": lead["id"] if lead else None,
            "call_type": "outbound",
            "call_status": "completed",
            "phone_number": phone_number,
            "provider": "external",
            "duration_seconds": int(data.get("duration_seconds") or 0),
            "outcome": data.get("outcome"),
            "call_summary": data.get("notes"),
            "appointment_set": appointment_set,
        }
    ).execute()
    if appointment_set and lead:
        mark_appointment_set(supabase, lead_id=lead["id"], organization_id=org_id)
    return {"success": True}


def _handle_appointment_set(org_id: str, workflow: str, data: dict[str, Any]) -> dict[str, Any]:
    lead_id = data.get("lead_id")
    if not lead_id:
        raise _bad_request("Lead ID is required")
    appointment = f"Appointment: {data.get('appointment_datetime')}"
    notes = data.get("notes")
    mark_appointment_set(
        supabase,
        lead_id=lead_id,
        organization_id=org_id,
        notes=f"{appointment}\n{notes}" if notes else appointment,
    )
    return {"success": True}


def _handle_custom(org_id: str, workflow: str, data: dict[str, Any]) -> dict[str, Any]:
    supabase.table("lead_events").insert(
        {
            "organization_id": org_id,
            "event_type": f"n8n:{workflow}",
            "event_data": data,
            "status": "pending",
        }
    ).execute()
    return {"success": True}


_AUTOMATION_HANDLERS: dict[str, Callable[[str, str, dict[str, Any]], dict[str, Any]]] = {
    "lead_created": _handle_lead_created,
    "lead_updated": _handle_lead_updated,
    "call_completed": _handle_call_completed,
    "appointment_set": _handle_appointment_set,
    "custom": _handle_custom,
}


@router.post("/n8n", response_model=AutomationWebhookResponse, response_model_exclude_none=True)
async def ingest_automation_webhook(
    request: Request,
    x_n8n_token: str | None = Header(default=None),
    token: str | None = Query(default=None),
):
    req_id = _request_id(request)
    incr_metric("webhook.events.received", provider="n8n")
    provided = x_n8n_token or token
    if not provided:
        incr_metric("webhook.events.rejected", provider="n8n", reason="missing_token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-n8n-token header")

    token_record = _resolve_automation_token(provided)
    if not token_record:
        incr_metric("webhook.events.rejected", provider="n8n", reason="invalid_token")
        log_event("automation_token_rejected", level=logging.WARNING, request_id=req_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or inactive token")

    parsed = _parse_json_or_raise(await request.body())
    try:
        payload = AutomationWebhookPayload.model_validate(parsed)
    except ValidationError as exc:
        raise _bad_request("Missing required fields: event, data") from exc

    org_id = token_record["organization_id"]
    workflow = token_record.get("token_name") or "workflow"
    handler = _AUTOMATION_HANDLERS.get(payload.event)
    if handler is None:
        raise _bad_request(f"Unknown event: {payload.event}")

    log_event(
        "automation_webhook_received",
        request_id=req_id,
        automation_event=payload.event,
        organization_id=org_id,
        workflow=workflow,
    )
    try:
        result = handler(org_id, workflow, payload.data)
    except HTTPException:
        raise
    except Exception as exc:
        raise _processing_failed(
            provider="n8n",
            request_id=req_id,
            exc=exc,
            automation_event=payload.event,
        ) from exc

    incr_metric("webhook.events.processed", provider="n8n", automation_event=payload.event)
    return result
