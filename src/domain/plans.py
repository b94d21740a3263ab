from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Final


@dataclass(frozen=True)
class PlanLimits:
    plan_name: str
    monthly_minutes: int
    monthly_calls: int
    monthly_leads: int  # -1 means unlimited


DEFAULT_PRICE_ID: Final[str] = "price_starter_monthly"

PLAN_LIMITS_BY_PRICE: Final[dict[str, PlanLimits]] = {
    "price_starter_monthly": PlanLimits("starter", 100, 500, 500),
    "price_professional_monthly": PlanLimits("professional", 500, 2500, 5000),
    "price_enterprise_monthly": PlanLimits("enterprise", 2000, 10000, -1),
}


def plan_limits_for_price(price_id: str | None) -> PlanLimits:
    return PLAN_LIMITS_BY_PRICE.get(price_id or "", PLAN_LIMITS_BY_PRICE[DEFAULT_PRICE_ID])


def monthly_minutes_limit(subscription: dict[str, Any]) -> int:
    explicit = subscription.get("monthly_minutes_limit")
    if explicit is not None:
        return int(explicit)
    return plan_limits_for_price(subscription.get("stripe_price_id")).monthly_minutes


def find_organizations_over_minutes_limit(
    *,
    supabase_client: Any,
    as_of: date,
) -> list[dict[str, Any]]:
    """Month-to-date minutes per active subscription compared against the plan limit."""
    subscriptions = (
        supabase_client.table("subscriptions")
        .select("organization_id, stripe_price_id, monthly_minutes_limit, status")
        .eq("status", "active")
        .execute()
    ).data or []
    month_start = as_of.replace(day=1).isoformat()
    over_limit: list[dict[str, Any]] = []

    for subscription in subscriptions:
        limit = monthly_minutes_limit(subscription)
        if limit < 0:
            continue
        rows = (
            supabase_client.table("billing_usage")
            .select("minutes_used")
            .eq("organization_id", subscription["organization_id"])
            .gte("usage_date", month_start)
            .lte("usage_date", as_of.isoformat())
            .execute()
        ).data or []
        minutes_used = sum(float(row.get("minutes_used") or 0) for row in rows)
        if minutes_used > limit:
            over_limit.append(
                {
                    "organization_id": subscription["organization_id"],
                    "minutes_used": round(minutes_used, 2),
                    "monthly_minutes_limit": limit,
                }
            )
    return over_limit
