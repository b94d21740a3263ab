from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field


class UsageAggregateRequest(BaseModel):
    date: dt.date | None = None
    dry_run: bool = False


class OrganizationOverLimit(BaseModel):
    organization_id: str
    minutes_used: float
    monthly_minutes_limit: int


class UsageAggregateResponse(BaseModel):
    success: bool
    date: dt.date
    dry_run: bool
    organizations_processed: int
    usage_records_written: int
    organizations_over_limit: list[OrganizationOverLimit] = Field(default_factory=list)
