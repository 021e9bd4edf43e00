"""
Limit evaluator for Contract Desk.

Decides whether one more ticket may be created against a contract item right
now. Every call queries the store afresh; limits gate a low-frequency action,
so results are never cached.
"""

import logging
from datetime import datetime
from typing import Optional, Union

from .errors import NotFoundError
from .models import Contract, ContractItem, ContractItemRef, LimitCheckResult
from .periods import period_window
from .store import SupabaseStore


logger = logging.getLogger(__name__)


def limit_reached_message(current_count: int, limit: int, period: str) -> str:
    """Build the user-facing explanation for a denied check."""
    return f"Limit reached: {current_count}/{limit} tickets for this {period} period."


def resolve_item(
    store: SupabaseStore,
    ref: ContractItemRef,
    tenant_id: str,
) -> tuple[Contract, ContractItem]:
    """
    Load the contract and item a reference points to.

    Raises:
        NotFoundError: If the contract is missing or not the tenant's, or the
            item is not in the contract.
    """
    contract = store.get_contract(ref.contract_id, tenant_id)
    if contract is None:
        raise NotFoundError("Contract not found")

    item = contract.find_item(ref.item_id)
    if item is None:
        raise NotFoundError("Contract item not found")
    return contract, item


def evaluate_item(
    store: SupabaseStore,
    ref: ContractItemRef,
    item: ContractItem,
    tenant_id: str,
    now: Optional[datetime] = None,
    tz_name: str = "UTC",
) -> LimitCheckResult:
    """
    Evaluate an already-resolved item against its usage.

    Items that are not limits, or limits without a positive value, are
    always allowed and never hit the store.
    """
    limit = item.enforceable_limit
    if limit is None:
        return LimitCheckResult(allowed=True, current_count=0, limit=0, period="monthly")

    period = item.effective_limit_period
    period_start, _ = period_window(period, now, tz_name)
    current_count = store.count_tickets(tenant_id, str(ref), period_start)
    allowed = current_count < limit

    if not allowed:
        logger.info(f"Contract item {ref} is at its limit ({current_count}/{limit}, {period})")

    return LimitCheckResult(
        allowed=allowed,
        current_count=current_count,
        limit=limit,
        period=period,
        message=None if allowed else limit_reached_message(current_count, limit, period),
    )


def check_limit(
    store: SupabaseStore,
    ref: Union[ContractItemRef, str],
    tenant_id: str,
    now: Optional[datetime] = None,
    tz_name: str = "UTC",
) -> LimitCheckResult:
    """
    Check whether a ticket may be created against a contract item.

    Args:
        store: Open store client.
        ref: Contract item reference (structured or serialized).
        tenant_id: Caller's tenant.
        now: Evaluation instant; defaults to the current time.
        tz_name: Accounting time zone.

    Returns:
        LimitCheckResult; ``message`` is set only when denied.

    Raises:
        InvalidReferenceError: If a serialized reference is malformed.
        NotFoundError: If the contract or item does not exist for the tenant.
        StoreError: If a store query fails.
    """
    if isinstance(ref, str):
        ref = ContractItemRef.parse(ref)

    _, item = resolve_item(store, ref, tenant_id)
    return evaluate_item(store, ref, item, tenant_id, now, tz_name)
