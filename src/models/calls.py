from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class CallInitiateRequest(BaseModel):
    organization_id: str | None = None
    phone_number: str | None = None
    lead_id: str | None = None
    campaign_id: str | None = None
    agent_id: str | None = None
    from_number: str | None = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "organization_id": "org-1",
                "lead_id": "lead-1",
                "campaign_id": "cmp-1",
                "phone_number": "+14155550100",
            }
        }
    }


class CallInitiateResponse(BaseModel):
    success: bool
    call_id: str
    provider: Literal["retell", "vapi"]
