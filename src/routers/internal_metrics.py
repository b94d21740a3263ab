from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from src.auth import require_internal_token
from src.config import settings
from src.db import supabase
from src.observability import metrics_snapshot, persist_metrics_snapshot


router = APIRouter(
    prefix="/api/internal/metrics",
    tags=["internal-metrics"],
    dependencies=[Depends(require_internal_token)],
)


class MetricsSnapshotResponse(BaseModel):
    counter_count: int
    counters: dict[str, int]


class MetricsSnapshotFlushRequest(BaseModel):
    source: str = "internal_flush"
    reset_after_persist: bool = False


class MetricsSnapshotFlushResponse(BaseModel):
    persisted: bool
    source: str
    counter_count: int


@router.get("", response_model=MetricsSnapshotResponse)
async def get_metrics_snapshot():
    counters = metrics_snapshot()
    return MetricsSnapshotResponse(counter_count=len(counters), counters=counters)


@router.post("/flush", response_model=MetricsSnapshotFlushResponse)
async def flush_metrics_snapshot(request: Request, data: MetricsSnapshotFlushRequest | None = None):
    data = data or MetricsSnapshotFlushRequest()
    counter_count = len(metrics_snapshot())
    persisted = persist_metrics_snapshot(
        supabase_client=supabase,
        source=data.source,
        request_id=getattr(request.state, "request_id", None),
        reset_after_persist=data.reset_after_persist,
        export_url=settings.observability_export_url,
        export_bearer_token=settings.observability_export_bearer_token,
        export_timeout_seconds=settings.observability_export_timeout_seconds,
    )
    return MetricsSnapshotFlushResponse(
        persisted=persisted,
        source=data.source,
        counter_count=counter_count,
    )
