"""
Contract item catalog for Contract Desk.

Lists the contract items a tenant user can attach a new ticket to: every
actionable item of every currently active contract.
"""

import logging
from datetime import date, datetime
from typing import Optional

from .models import CatalogEntry, Contract
from .periods import today_in
from .store import StoreError, SupabaseStore


logger = logging.getLogger(__name__)


def active_contracts(contracts: list[Contract], today: date) -> list[Contract]:
    """Keep contracts whose term contains ``today``, preserving order."""
    return [contract for contract in contracts if contract.is_active(today)]


def catalog_entries(contracts: list[Contract]) -> list[CatalogEntry]:
    """
    Build catalog entries from already-filtered contracts.

    Order follows the contracts, then the items within each contract.
    Plain text items and items without a description are skipped.
    """
    entries = []
    for contract in contracts:
        for item in contract.items:
            if not item.is_actionable or not item.text:
                continue
            entries.append(CatalogEntry(
                id=str(contract.ref_for(item)),
                text=item.text,
                contract_id=contract.id,
                contract_title=contract.title,
                has_limit=item.type == "limit",
                limit_value=item.value if item.type == "limit" else None,
                limit_period=item.effective_limit_period,
            ))
    return entries


def list_selectable_items(
    store: SupabaseStore,
    tenant_id: str,
    now: Optional[datetime] = None,
    tz_name: str = "UTC",
) -> list[CatalogEntry]:
    """
    List the contract items a new ticket may be filed against.

    A store failure degrades to an empty catalog: the ticket can still be
    created under "Others".

    Args:
        store: Open store client.
        tenant_id: Caller's tenant.
        now: Evaluation instant; defaults to the current time.
        tz_name: Accounting time zone used to decide contract activity.

    Returns:
        Catalog entries in contract order (most recent first), then item
        order.
    """
    try:
        contracts = store.list_contracts(tenant_id)
    except StoreError as e:
        logger.error(f"Failed to load contracts for tenant {tenant_id}, catalog is empty: {e}")
        return []

    entries = catalog_entries(active_contracts(contracts, today_in(now, tz_name)))
    logger.debug(f"Tenant {tenant_id} has {len(entries)} selectable contract items")
    return entries
