from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class CallWebhookAck(BaseModel):
    received: bool = True
    warning: str | None = None
    note: str | None = None


class AutomationWebhookPayload(BaseModel):
    event: str
    organization_id: str | None = None  # ignored; the token decides the tenant
    data: dict[str, Any]


class AutomationWebhookResponse(BaseModel):
    success: bool = True
    lead_id: str | None = None
    workflow: str | None = None
