"""
Usage aggregator for Contract Desk.

Builds the dashboard view of how much of each active contract item a tenant
has consumed in the item's current period. Read-only; a failing count for one
item drops that item from the snapshot instead of failing the whole
dashboard.
"""

import logging
from datetime import datetime, timedelta
from functools import cmp_to_key
from typing import Optional, Union

from .catalog import active_contracts
from .models import ContractItemRef, ContractItemUsage, UsageStats, UsageTrendPoint
from .periods import localize, period_window
from .store import StoreError, SupabaseStore


logger = logging.getLogger(__name__)


NEAR_LIMIT_PERCENT = 80.0


def compare_usage(a: ContractItemUsage, b: ContractItemUsage) -> float:
    """
    Dashboard ordering.

    Two limited items compare by usage percentage, any other pair by raw
    ticket count, both descending. Mixed lists therefore do not follow a
    single key.
    """
    if a.limit and b.limit:
        return b.usage_percentage - a.usage_percentage
    return b.ticket_count - a.ticket_count


def build_item_usage(
    base: dict,
    ticket_count: int,
    limit: Optional[int],
    near_limit_percent: float = NEAR_LIMIT_PERCENT,
) -> ContractItemUsage:
    """Derive percentage and limit flags for one item's count."""
    usage_percentage = (ticket_count / limit) * 100 if limit else 0.0
    is_at_limit = ticket_count >= limit if limit else False
    is_near_limit = bool(limit) and not is_at_limit and usage_percentage >= near_limit_percent
    return ContractItemUsage(
        **base,
        ticket_count=ticket_count,
        limit=limit,
        usage_percentage=usage_percentage,
        is_at_limit=is_at_limit,
        is_near_limit=is_near_limit,
    )


def get_usage_stats(
    store: SupabaseStore,
    tenant_id: str,
    now: Optional[datetime] = None,
    tz_name: str = "UTC",
    near_limit_percent: float = NEAR_LIMIT_PERCENT,
) -> UsageStats:
    """
    Get usage statistics for every actionable item of the active contracts.

    Tickets without a contract item are not counted anywhere in the
    snapshot.

    Args:
        store: Open store client.
        tenant_id: Tenant to report on.
        now: Evaluation instant; defaults to the current time.
        tz_name: Accounting time zone.
        near_limit_percent: Usage share at which an item is "near limit".

    Returns:
        UsageStats with per-item usage in dashboard order.

    Raises:
        StoreError: If the tenant's contracts cannot be loaded.
    """
    local_now = localize(now, tz_name)
    contracts = active_contracts(store.list_contracts(tenant_id), local_now.date())

    usage_by_item: list[ContractItemUsage] = []
    total_tickets = 0
    items_with_limits = 0
    items_at_limit = 0
    items_near_limit = 0

    for contract in contracts:
        for item in contract.items:
            if not item.is_actionable or not item.text:
                continue

            ref = str(contract.ref_for(item))
            period_start, _ = period_window(item.effective_limit_period, local_now, tz_name)

            try:
                ticket_count = store.count_tickets(tenant_id, ref, period_start)
            except StoreError as e:
                logger.error(f"Failed to count tickets for {ref}, omitting from usage: {e}")
                continue

            limit = item.enforceable_limit
            usage = build_item_usage(
                {
                    "contract_item_id": ref,
                    "contract_id": contract.id,
                    "contract_title": contract.title,
                    "item_text": item.text,
                    "item_type": item.type,
                    "limit_period": item.effective_limit_period,
                },
                ticket_count,
                limit,
                near_limit_percent,
            )

            total_tickets += ticket_count
            if limit:
                items_with_limits += 1
                if usage.is_at_limit:
                    items_at_limit += 1
                if usage.is_near_limit:
                    items_near_limit += 1
            usage_by_item.append(usage)

    usage_by_item.sort(key=cmp_to_key(compare_usage))

    logger.debug(
        f"Usage for tenant {tenant_id}: {len(usage_by_item)} items, "
        f"{items_at_limit} at limit, {items_near_limit} near limit"
    )

    return UsageStats(
        total_items=len(usage_by_item),
        items_with_limits=items_with_limits,
        items_at_limit=items_at_limit,
        items_near_limit=items_near_limit,
        total_tickets=total_tickets,
        usage_by_item=usage_by_item,
    )


def get_usage_trend(
    store: SupabaseStore,
    tenant_id: str,
    ref: Union[ContractItemRef, str],
    days: int = 30,
    now: Optional[datetime] = None,
    tz_name: str = "UTC",
) -> list[UsageTrendPoint]:
    """
    Get daily ticket counts for a contract item over the last ``days`` days.

    Days without tickets are included with a zero count.

    Args:
        store: Open store client.
        tenant_id: Tenant to report on.
        ref: Contract item reference.
        days: Number of calendar days ending today.
        now: Evaluation instant; defaults to the current time.
        tz_name: Time zone that defines calendar days.

    Returns:
        One point per day, oldest first.
    """
    if isinstance(ref, str):
        ref = ContractItemRef.parse(ref)
    if days < 1:
        return []

    local_now = localize(now, tz_name)
    today = local_now.date()
    counts = {
        (today - timedelta(days=days - 1 - offset)).isoformat(): 0
        for offset in range(days)
    }

    _, tomorrow = period_window("monthly", local_now, tz_name)
    since = tomorrow - timedelta(days=days)
    for created_at in store.list_ticket_timestamps(tenant_id, str(ref), since):
        key = localize(created_at, tz_name).date().isoformat()
        if key in counts:
            counts[key] += 1

    return [UsageTrendPoint(date=day, count=count) for day, count in sorted(counts.items())]
