"""
Contract administration for Contract Desk.

Super admins create contracts for tenants and update them; an update replaces
the whole item list. Also provides the structured item-editing helpers used
alongside the text parser when building an item list by hand.
"""

import logging
from datetime import date
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from .activity import log_activity
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import Contract, ContractInput, ContractItem, ContractSummary, ContractUpdate, ItemType
from .parser import generate_item_id
from .store import SupabaseStore


logger = logging.getLogger(__name__)


SUPER_ADMIN = "super_admin"


def require_super_admin(role: str) -> None:
    """
    Raises:
        ForbiddenError: Unless ``role`` is super admin.
    """
    if role != SUPER_ADMIN:
        raise ForbiddenError("Super admin access required")


def validate_contract_dates(start_date: date, end_date: date) -> None:
    """
    Raises:
        ValidationError: If the contract does not end after it starts.
    """
    if end_date <= start_date:
        raise ValidationError("End date must be after start date")


def validate_items(items: list[ContractItem]) -> None:
    """
    Raises:
        ValidationError: If two items share an id.
    """
    seen: set[str] = set()
    for item in items:
        if item.id in seen:
            raise ValidationError(f"Duplicate contract item id '{item.id}'")
        seen.add(item.id)


def new_item(items: list[ContractItem], item_type: ItemType = "text", text: str = "") -> list[ContractItem]:
    """Append a blank item with a fresh id; returns the new list."""
    taken = {item.id for item in items}
    return [*items, ContractItem(id=generate_item_id(taken, len(items)), type=item_type, text=text)]


def update_item(items: list[ContractItem], item_id: str, **changes: Any) -> list[ContractItem]:
    """
    Replace fields of one item; returns the new list.

    Raises:
        NotFoundError: If no item has ``item_id``.
        ValidationError: If the changes produce an invalid item.
    """
    updated = []
    found = False
    for item in items:
        if item.id == item_id:
            found = True
            try:
                item = ContractItem(**{**item.model_dump(), **changes, "id": item.id})
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid contract item: {e}") from e
        updated.append(item)
    if not found:
        raise NotFoundError("Contract item not found")
    return updated


def remove_item(items: list[ContractItem], item_id: str) -> list[ContractItem]:
    """Drop one item by id; returns the new list."""
    return [item for item in items if item.id != item_id]


def create_contract(
    store: SupabaseStore,
    actor_id: str,
    actor_role: str,
    contract_input: ContractInput,
) -> Contract:
    """
    Create a contract for a tenant.

    Args:
        store: Open store client.
        actor_id: Acting user.
        actor_role: Acting user's role; must be super admin.
        contract_input: Contract fields and items.

    Returns:
        The stored contract.

    Raises:
        ForbiddenError: If the actor is not a super admin.
        ValidationError: If dates or items are invalid.
    """
    require_super_admin(actor_role)
    validate_contract_dates(contract_input.start_date, contract_input.end_date)
    validate_items(contract_input.items)

    contract = store.create_contract({
        "tenant_id": contract_input.tenant_id,
        "title": contract_input.title,
        "summary": ContractSummary(items=contract_input.items).to_json(),
        "pdf_url": contract_input.pdf_url or None,
        "start_date": contract_input.start_date.isoformat(),
        "end_date": contract_input.end_date.isoformat(),
        "created_by": actor_id,
    })

    logger.info(f"Created contract {contract.id} for tenant {contract.tenant_id}")
    log_activity(
        store,
        contract.tenant_id,
        actor_id,
        "contract_created",
        "contract",
        contract.id,
        {"title": contract.title},
    )
    return contract


def update_contract(
    store: SupabaseStore,
    actor_id: str,
    actor_role: str,
    contract_id: str,
    update: ContractUpdate,
) -> Contract:
    """
    Update a contract; a new item list replaces the old one wholesale.

    Dates are validated against whichever of the stored and new values will
    be in effect.

    Raises:
        ForbiddenError: If the actor is not a super admin.
        NotFoundError: If the contract does not exist.
        ValidationError: If the resulting dates or items are invalid.
    """
    require_super_admin(actor_role)

    existing: Optional[Contract] = store.get_contract(contract_id)
    if existing is None:
        raise NotFoundError("Contract not found")

    fields = update.model_fields_set
    start_date = update.start_date or existing.start_date
    end_date = update.end_date or existing.end_date
    if update.start_date or update.end_date:
        validate_contract_dates(start_date, end_date)

    changes: dict[str, Any] = {}
    if update.title:
        changes["title"] = update.title
    if update.items is not None:
        validate_items(update.items)
        changes["summary"] = ContractSummary(items=update.items).to_json()
    if "pdf_url" in fields:
        changes["pdf_url"] = update.pdf_url or None
    if update.start_date:
        changes["start_date"] = update.start_date.isoformat()
    if update.end_date:
        changes["end_date"] = update.end_date.isoformat()

    if not changes:
        return existing

    contract = store.update_contract(contract_id, changes)
    logger.info(f"Updated contract {contract_id}: {sorted(changes)}")
    log_activity(
        store,
        existing.tenant_id,
        actor_id,
        "contract_updated",
        "contract",
        contract_id,
    )
    return contract
