from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any


INCREMENT_USAGE_RPC = "increment_billing_usage"


@dataclass
class UsageTotals:
    minutes: float = 0.0
    calls: int = 0
    answered: int = 0
    cost: float = 0.0

    def add_call(self, *, duration_seconds: int, answered: bool, cost_amount: float) -> None:
        self.minutes += duration_seconds / 60
        self.calls += 1
        self.answered += 1 if answered else 0
        self.cost += cost_amount


def usage_day(now: datetime | None = None) -> date:
    """The usage bucket is the server's current UTC date, not the call's own timestamp."""
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()


def accumulate_usage(
    *,
    supabase_client: Any,
    organization_id: str,
    provider: str,
    duration_seconds: int,
    cost_amount: float | None,
    was_answered: bool,
    usage_date: date | None = None,
) -> bool:
    """
    Add one finished call to the (organization, day, provider) usage row.

    The increment runs inside a single INSERT ... ON CONFLICT DO UPDATE in the
    database, so concurrent deliveries cannot lose updates. Returns False when
    the call contributes nothing (zero duration).

    Not idempotent: a redelivered ``ended`` event is counted again until
    ``aggregate_usage_for_date`` rebuilds that day from call_logs.
    """
    if duration_seconds <= 0:
        return False
    supabase_client.rpc(
        INCREMENT_USAGE_RPC,
        {
            "p_organization_id": organization_id,
            "p_usage_date": (usage_date or usage_day()).isoformat(),
            "p_provider": provider,
            "p_minutes": duration_seconds / 60,
            "p_calls": 1,
            "p_answered": 1 if was_answered else 0,
            "p_cost": float(cost_amount or 0),
        },
    ).execute()
    return True


def day_bounds(target: date) -> tuple[str, str]:
    start = datetime.combine(target, time.min, tzinfo=timezone.utc)
    end = datetime.combine(target, time.max, tzinfo=timezone.utc)
    return start.isoformat(), end.isoformat()


def rollup_call_logs(calls: list[dict[str, Any]]) -> dict[str, UsageTotals]:
    by_provider: dict[str, UsageTotals] = {}
    for call in calls:
        provider = call.get("provider") or "unknown"
        totals = by_provider.setdefault(provider, UsageTotals())
        totals.add_call(
            duration_seconds=int(call.get("duration_seconds") or 0),
            answered=call.get("call_status") == "completed",
            cost_amount=float(call.get("cost_amount") or 0),
        )
    return by_provider


def aggregate_usage_for_date(
    *,
    supabase_client: Any,
    usage_date: date,
    dry_run: bool = False,
) -> dict[str, int]:
    """
    Recompute every organization's usage rows for one day from call_logs.

    Overwrites the per-event accumulator totals, which corrects any drift.
    """
    organizations = supabase_client.table("organizations").select("id").execute().data or []
    start_iso, end_iso = day_bounds(usage_date)
    records_written = 0

    for organization in organizations:
        calls = (
            supabase_client.table("call_logs")
            .select("provider, duration_seconds, call_status, cost_amount")
            .eq("organization_id", organization["id"])
            .gte("created_at", start_iso)
            .lte("created_at", end_iso)
            .execute()
        ).data or []
        if not calls:
            continue

        for provider, totals in rollup_call_logs(calls).items():
            records_written += 1
            if dry_run:
                continue
            supabase_client.table("billing_usage").upsert(
                {
                    "organization_id": organization["id"],
                    "usage_date": usage_date.isoformat(),
                    "provider": provider,
                    "minutes_used": totals.minutes,
                    "calls_made": totals.calls,
                    "calls_answered": totals.answered,
                    "cost_amount": totals.cost,
                },
                on_conflict="organization_id,usage_date,provider",
            ).execute()

    return {
        "organizations_processed": len(organizations),
        "usage_records_written": records_written,
    }
