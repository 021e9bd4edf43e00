"""Shared fixtures: an in-memory store with the SupabaseStore interface."""

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import pytest

from contractdesk.background import BackgroundDispatcher
from contractdesk.models import Contract, ContractItem, Ticket, TicketMessage
from contractdesk.store import StoreError


TENANT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_TENANT_ID = "22222222-2222-2222-2222-222222222222"
USER_ID = "user-1"

# Mid-quarter instant used by most service tests
NOW = datetime(2024, 7, 15, 12, 0, tzinfo=timezone.utc)


class FakeStore:
    """
    In-memory stand-in for SupabaseStore.

    Applies the same tenant scoping and counting rules. Any method named in
    ``failing`` raises StoreError instead of running.
    """

    def __init__(self, now: datetime = NOW):
        self.now = now
        self.contracts: dict[str, Contract] = {}
        self.tickets: list[Ticket] = []
        self.messages: list[TicketMessage] = []
        self.activity: list[dict] = []
        self.profiles: dict[str, dict] = {}
        self.tenants: dict[str, str] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise StoreError(f"{name} failed", http_status=500)

    # Seeding helpers

    def add_contract(
        self,
        items: list[ContractItem],
        tenant_id: str = TENANT_ID,
        title: str = "Support Contract",
        start_date: date = date(2024, 1, 1),
        end_date: date = date(2024, 12, 31),
        contract_id: Optional[str] = None,
    ) -> Contract:
        contract = Contract(
            id=contract_id or str(uuid.uuid4()),
            tenant_id=tenant_id,
            title=title,
            start_date=start_date,
            end_date=end_date,
            summary={"version": "1.0", "items": [item.model_dump(exclude_none=True) for item in items]},
        )
        self.contracts[contract.id] = contract
        return contract

    def add_ticket(
        self,
        contract_item_id: Optional[str],
        created_at: datetime = NOW,
        tenant_id: str = TENANT_ID,
        status: str = "open",
    ) -> Ticket:
        ticket = Ticket(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            created_by=USER_ID,
            title="Seeded ticket",
            status=status,
            contract_item_id=contract_item_id,
            created_at=created_at,
        )
        self.tickets.append(ticket)
        return ticket

    def add_user(self, user_id: str, email: str, tenant_id: str = TENANT_ID) -> None:
        self.profiles[user_id] = {"tenant_id": tenant_id, "email": email}

    # SupabaseStore interface

    def list_contracts(self, tenant_id: str) -> list[Contract]:
        self._call("list_contracts")
        return [c for c in reversed(list(self.contracts.values())) if c.tenant_id == tenant_id]

    def get_contract(self, contract_id: str, tenant_id: Optional[str] = None) -> Optional[Contract]:
        self._call("get_contract")
        contract = self.contracts.get(contract_id)
        if contract is None or (tenant_id is not None and contract.tenant_id != tenant_id):
            return None
        return contract

    def create_contract(self, row: dict) -> Contract:
        self._call("create_contract")
        contract = Contract(id=str(uuid.uuid4()), **row)
        self.contracts[contract.id] = contract
        return contract

    def update_contract(self, contract_id: str, changes: dict) -> Contract:
        self._call("update_contract")
        existing = self.contracts[contract_id]
        contract = Contract(**{**existing.model_dump(), **changes})
        self.contracts[contract_id] = contract
        return contract

    def count_tickets(self, tenant_id: str, contract_item_ref: str, since: datetime) -> int:
        self._call("count_tickets")
        return sum(
            1 for t in self.tickets
            if t.tenant_id == tenant_id
            and t.contract_item_id == contract_item_ref
            and t.created_at >= since
        )

    def list_ticket_timestamps(self, tenant_id: str, contract_item_ref: str, since: datetime) -> list[datetime]:
        self._call("list_ticket_timestamps")
        return sorted(
            t.created_at for t in self.tickets
            if t.tenant_id == tenant_id
            and t.contract_item_id == contract_item_ref
            and t.created_at >= since
        )

    def insert_ticket(self, row: dict) -> Ticket:
        self._call("insert_ticket")
        ticket = Ticket(id=str(uuid.uuid4()), created_at=self.now, **row)
        self.tickets.append(ticket)
        return ticket

    def insert_ticket_within_limit(self, row: dict, since: datetime, limit: int) -> Optional[Ticket]:
        self._call("insert_ticket_within_limit")
        current = sum(
            1 for t in self.tickets
            if t.tenant_id == row["tenant_id"]
            and t.contract_item_id == row["contract_item_id"]
            and t.created_at >= since
        )
        if current >= limit:
            return None
        ticket = Ticket(id=str(uuid.uuid4()), created_at=self.now, **row)
        self.tickets.append(ticket)
        return ticket

    def delete_ticket(self, ticket_id: str, tenant_id: str) -> None:
        self._call("delete_ticket")
        self.tickets = [t for t in self.tickets if not (t.id == ticket_id and t.tenant_id == tenant_id)]

    def insert_message(self, row: dict) -> TicketMessage:
        self._call("insert_message")
        message = TicketMessage(id=str(uuid.uuid4()), created_at=self.now, **row)
        self.messages.append(message)
        return message

    def get_ticket(self, ticket_id: str, tenant_id: str) -> Optional[Ticket]:
        self._call("get_ticket")
        for ticket in self.tickets:
            if ticket.id == ticket_id and ticket.tenant_id == tenant_id:
                return ticket
        return None

    def list_tenant_user_emails(self, tenant_id: str, exclude_user_id: Optional[str] = None) -> list[str]:
        self._call("list_tenant_user_emails")
        return [
            p["email"] for uid, p in self.profiles.items()
            if p["tenant_id"] == tenant_id and uid != exclude_user_id
        ]

    def get_user_email(self, user_id: str) -> Optional[str]:
        self._call("get_user_email")
        profile = self.profiles.get(user_id)
        return profile["email"] if profile else None

    def get_tenant_name(self, tenant_id: str) -> Optional[str]:
        self._call("get_tenant_name")
        return self.tenants.get(tenant_id)

    def insert_activity(self, row: dict) -> None:
        self._call("insert_activity")
        self.activity.append(row)


@pytest.fixture
def store():
    """In-memory store."""
    return FakeStore()


@pytest.fixture
def dispatcher():
    """Background dispatcher, drained after the test."""
    dispatcher = BackgroundDispatcher(max_workers=2)
    yield dispatcher
    dispatcher.shutdown(wait=True)


@pytest.fixture
def limit_item():
    """Limit item: 5 tickets per quarter."""
    return ContractItem(id="item_1", text="Incident tickets", type="limit", value=5, limit_period="quarterly")
