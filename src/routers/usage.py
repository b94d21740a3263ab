from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.auth import require_internal_token
from src.config import settings
from src.db import supabase
from src.domain.plans import find_organizations_over_minutes_limit
from src.domain.usage import aggregate_usage_for_date
from src.models.usage import UsageAggregateRequest, UsageAggregateResponse
from src.observability import incr_metric, log_event, persist_metrics_snapshot


router = APIRouter(
    prefix="/api/usage",
    tags=["usage"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/aggregate", response_model=UsageAggregateResponse)
async def aggregate_usage(request: Request, data: UsageAggregateRequest | None = None):
    """
    Rebuild one day's billing_usage rows from call_logs and report
    organizations past their monthly minutes allowance.

    Intended for a daily cron; the date defaults to yesterday (UTC).
    """
    request_id = getattr(request.state, "request_id", None)
    data = data or UsageAggregateRequest()
    target = data.date or (datetime.now(timezone.utc) - timedelta(days=1)).date()

    try:
        totals = aggregate_usage_for_date(
            supabase_client=supabase,
            usage_date=target,
            dry_run=data.dry_run,
        )
        over_limit = find_organizations_over_minutes_limit(supabase_client=supabase, as_of=target)
    except Exception as exc:
        incr_metric("usage.aggregate.failed")
        log_event(
            "usage_aggregate_failed",
            level=logging.ERROR,
            request_id=request_id,
            usage_date=target.isoformat(),
            error=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"type": "usage_aggregate_failed", "message": str(exc)},
        ) from exc

    for organization in over_limit:
        log_event(
            "usage_limit_exceeded",
            level=logging.WARNING,
            request_id=request_id,
            **organization,
        )
    incr_metric("usage.aggregate.runs", dry_run=data.dry_run)
    incr_metric("usage.aggregate.records_written", value=totals["usage_records_written"])
    log_event(
        "usage_aggregate_completed",
        request_id=request_id,
        usage_date=target.isoformat(),
        dry_run=data.dry_run,
        over_limit_count=len(over_limit),
        **totals,
    )
    persist_metrics_snapshot(
        supabase_client=supabase,
        source="usage_aggregate",
        request_id=request_id,
        export_url=settings.observability_export_url,
        export_bearer_token=settings.observability_export_bearer_token,
        export_timeout_seconds=settings.observability_export_timeout_seconds,
    )

    return UsageAggregateResponse(
        success=True,
        date=target,
        dry_run=data.dry_run,
        organizations_processed=totals["organizations_processed"],
        usage_records_written=totals["usage_records_written"],
        organizations_over_limit=over_limit,
    )
