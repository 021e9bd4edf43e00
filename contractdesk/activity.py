"""
Activity log for Contract Desk.

Appends audit rows for ticket and contract events. Logging is best-effort:
a failed write is reported in the application log and never breaks the
operation being recorded.
"""

import logging
from typing import Any, Optional

from .store import StoreError, SupabaseStore


logger = logging.getLogger(__name__)


def log_activity(
    store: SupabaseStore,
    tenant_id: str,
    user_id: str,
    action_type: str,
    entity_type: str,
    entity_id: str,
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Record an activity log entry.

    Args:
        store: Open store client.
        tenant_id: Tenant the event belongs to.
        user_id: Acting user.
        action_type: Event name, e.g. ``ticket_created``.
        entity_type: Kind of entity acted on, e.g. ``ticket``.
        entity_id: Identifier of that entity.
        metadata: Optional event details.

    Returns:
        True if the entry was written.
    """
    try:
        store.insert_activity({
            "tenant_id": tenant_id,
            "user_id": user_id,
            "action_type": action_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata": metadata or None,
        })
        return True
    except StoreError as e:
        logger.error(f"Failed to log activity {action_type} for {entity_type} {entity_id}: {e}")
        return False
