from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.config import settings
from src.db import supabase


router = APIRouter(prefix="/api", tags=["health"])

REQUIRED_SETTINGS = ("supabase_url", "supabase_service_role_key", "stripe_secret_key")


def _check_supabase() -> dict[str, Any]:
    started = time.perf_counter()
    try:
        supabase.table("organizations").select("id").limit(1).execute()
    except Exception as exc:
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_environment() -> dict[str, Any]:
    missing = [name.upper() for name in REQUIRED_SETTINGS if not getattr(settings, name, None)]
    if missing:
        return {"status": "error", "error": f"Missing: {', '.join(missing)}"}
    return {"status": "ok"}


@router.get("/health")
async def health():
    checks = {
        "supabase": _check_supabase(),
        "environment": _check_environment(),
    }
    healthy = all(check["status"] == "ok" for check in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        },
    )
