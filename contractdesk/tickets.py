"""
Ticket creation gate for Contract Desk.

The only mutation path that can consume a contract item's quota. Creation is
all-or-nothing from the caller's point of view: either the ticket (and its
optional first message) is stored, or nothing is. Activity logging and
notifications run in the background and never affect the outcome.
"""

import logging
from datetime import datetime
from typing import Optional

from .activity import log_activity
from .background import BackgroundDispatcher
from .errors import ForbiddenError, LimitExceededError, NotFoundError, ValidationError
from .limits import evaluate_item, limit_reached_message, resolve_item
from .models import (
    ContractItem,
    ContractItemRef,
    CreateTicketInput,
    LimitCheckResult,
    Ticket,
    TicketMessage,
    TicketStatus,
)
from .notifications import TicketNotifier
from .periods import period_window
from .store import StoreError, SupabaseStore


logger = logging.getLogger(__name__)


TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 10_000
DEFAULT_PRIORITY = "medium"

VALID_STATUS_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "open": ("in_progress", "waiting", "closed"),
    "in_progress": ("waiting", "closed"),
    "waiting": ("in_progress", "closed"),
    "closed": (),
}


def validate_ticket_title(title: Optional[str]) -> None:
    """
    Validate a ticket title.

    Raises:
        ValidationError: If the title is blank or longer than 200 characters.
    """
    if not title or not title.strip():
        raise ValidationError("Ticket title is required")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Ticket title must be {TITLE_MAX_LENGTH} characters or less")


def validate_message_content(content: Optional[str]) -> None:
    """
    Validate message content.

    Raises:
        ValidationError: If the content is blank or longer than 10,000
            characters.
    """
    if not content or not content.strip():
        raise ValidationError("Message content is required")
    if len(content) > MESSAGE_MAX_LENGTH:
        raise ValidationError(f"Message content must be {MESSAGE_MAX_LENGTH:,} characters or less")


def validate_status_transition(current: TicketStatus, new: TicketStatus) -> None:
    """
    Validate a ticket status change.

    Status updates are written by the support console, not by this package;
    it calls this before persisting a new status.

    Raises:
        ValidationError: If ``new`` is not reachable from ``current``.
    """
    if current == new:
        return
    if new not in VALID_STATUS_TRANSITIONS.get(current, ()):
        raise ValidationError(f"Cannot transition from {current} to {new}")


class TicketService:
    """
    Creates tickets and messages for a tenant.

    Args:
        store: Open store client.
        dispatcher: Runs side effects in the background.
        notifier: Sends notification emails; None disables them.
        tz_name: Accounting time zone for limit periods.
    """

    def __init__(
        self,
        store: SupabaseStore,
        dispatcher: BackgroundDispatcher,
        notifier: Optional[TicketNotifier] = None,
        tz_name: str = "UTC",
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._tz_name = tz_name

    def create_ticket(
        self,
        tenant_id: str,
        user_id: str,
        ticket_input: CreateTicketInput,
        now: Optional[datetime] = None,
    ) -> Ticket:
        """
        Create a ticket, consuming contract item quota if one is referenced.

        Args:
            tenant_id: Caller's tenant.
            user_id: Creating user.
            ticket_input: Title, priority, optional first message and
                optional contract item reference.
            now: Evaluation instant for the limit period.

        Returns:
            The stored ticket with status ``open``.

        Raises:
            ValidationError: If the title or initial message is invalid.
            InvalidReferenceError: If the contract item reference is malformed.
            NotFoundError: If the referenced contract or item does not exist.
            LimitExceededError: If the contract item has no quota left.
            StoreError: If the store fails; nothing is left behind.
        """
        validate_ticket_title(ticket_input.title)
        if ticket_input.initial_message:
            validate_message_content(ticket_input.initial_message)

        ref = ticket_input.item_reference()
        row = {
            "tenant_id": tenant_id,
            "created_by": user_id,
            "title": ticket_input.title,
            "status": "open",
            "priority": ticket_input.priority or DEFAULT_PRIORITY,
            "contract_item_id": str(ref) if ref else None,
        }

        if ref is None:
            ticket = self._store.insert_ticket(row)
        else:
            ticket = self._insert_against_item(tenant_id, ref, row, now)

        if ticket_input.initial_message:
            self._insert_initial_message(ticket, user_id, ticket_input.initial_message)

        logger.info(
            f"Created ticket {ticket.id} for tenant {tenant_id}"
            + (f" against contract item {ref}" if ref else "")
        )
        self._dispatch_created(ticket, user_id, ticket_input.initial_message)
        return ticket

    def _insert_against_item(
        self,
        tenant_id: str,
        ref: ContractItemRef,
        row: dict,
        now: Optional[datetime],
    ) -> Ticket:
        # Authoritative check immediately before the write
        _, item = resolve_item(self._store, ref, tenant_id)
        result = evaluate_item(self._store, ref, item, tenant_id, now, self._tz_name)
        if not result.allowed:
            raise LimitExceededError(result)

        limit = item.enforceable_limit
        if limit is None:
            return self._store.insert_ticket(row)

        period_start, _ = period_window(item.effective_limit_period, now, self._tz_name)
        ticket = self._store.insert_ticket_within_limit(row, period_start, limit)
        if ticket is None:
            # Another request took the last slot between check and insert
            raise LimitExceededError(self._denied_after_race(ref, item, tenant_id, now))
        return ticket

    def _denied_after_race(
        self,
        ref: ContractItemRef,
        item: ContractItem,
        tenant_id: str,
        now: Optional[datetime],
    ) -> LimitCheckResult:
        limit = item.enforceable_limit or 0
        period = item.effective_limit_period
        try:
            current = evaluate_item(self._store, ref, item, tenant_id, now, self._tz_name).current_count
        except StoreError as e:
            logger.warning(f"Could not refresh usage for {ref} after refused insert: {e}")
            current = limit
        current = max(current, limit)
        return LimitCheckResult(
            allowed=False,
            current_count=current,
            limit=limit,
            period=period,
            message=limit_reached_message(current, limit, period),
        )

    def _insert_initial_message(self, ticket: Ticket, user_id: str, content: str) -> None:
        try:
            self._store.insert_message({
                "ticket_id": ticket.id,
                "author_id": user_id,
                "content": content,
                "is_internal_note": False,
            })
        except StoreError:
            logger.error(f"Failed to store initial message, rolling back ticket {ticket.id}")
            try:
                self._store.delete_ticket(ticket.id, ticket.tenant_id)
            except StoreError as cleanup_error:
                logger.error(f"Rollback of ticket {ticket.id} failed: {cleanup_error}")
            raise

    def _dispatch_created(self, ticket: Ticket, user_id: str, initial_message: Optional[str]) -> None:
        self._dispatcher.submit(
            "activity:ticket_created",
            log_activity,
            self._store,
            ticket.tenant_id,
            user_id,
            "ticket_created",
            "ticket",
            ticket.id,
            {
                "title": ticket.title,
                "priority": ticket.priority,
                "contract_item_id": ticket.contract_item_id,
            },
        )
        if self._notifier is None:
            return
        self._dispatcher.submit(
            "notify:tenant_users",
            self._notifier.notify_tenant_users,
            ticket,
            user_id,
        )
        self._dispatcher.submit(
            "notify:admin",
            self._notifier.notify_admin,
            ticket,
            initial_message,
        )

    def add_message(
        self,
        tenant_id: str,
        user_id: str,
        user_role: str,
        ticket_id: str,
        content: str,
        is_internal_note: bool = False,
    ) -> TicketMessage:
        """
        Post a message on a ticket.

        Args:
            tenant_id: Caller's tenant.
            user_id: Author.
            user_role: Author's role; tenant users cannot post internal notes.
            ticket_id: Target ticket.
            content: Message body.
            is_internal_note: Hide the message from tenant users.

        Returns:
            The stored message.

        Raises:
            ValidationError: If the content is invalid.
            NotFoundError: If the ticket is not the tenant's.
            ForbiddenError: If a tenant user posts an internal note.
        """
        validate_message_content(content)

        ticket = self._store.get_ticket(ticket_id, tenant_id)
        if ticket is None:
            raise NotFoundError("Ticket not found")

        if is_internal_note and user_role == "tenant_user":
            raise ForbiddenError("Only admins can create internal notes")

        message = self._store.insert_message({
            "ticket_id": ticket.id,
            "author_id": user_id,
            "content": content,
            "is_internal_note": is_internal_note,
        })

        self._dispatcher.submit(
            "activity:message_added",
            log_activity,
            self._store,
            tenant_id,
            user_id,
            "message_added",
            "ticket",
            ticket.id,
            {"is_internal_note": is_internal_note},
        )
        if self._notifier is not None and not is_internal_note:
            self._dispatcher.submit(
                "notify:message_added",
                self._notifier.notify_message_added,
                ticket,
                user_id,
            )
        return message
