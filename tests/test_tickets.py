"""Tests for the ticket creation gate and ticket messages."""

from unittest.mock import MagicMock, patch

import pytest

from conftest import NOW, TENANT_ID, USER_ID

from contractdesk.errors import (
    ForbiddenError,
    InvalidReferenceError,
    LimitExceededError,
    NotFoundError,
    ValidationError,
)
from contractdesk.models import ContractItem, CreateTicketInput
from contractdesk.store import StoreError
from contractdesk.tickets import (
    TicketService,
    validate_message_content,
    validate_status_transition,
    validate_ticket_title,
)


class TestValidation:
    """Tests for input validation helpers."""

    @pytest.mark.parametrize("title", [None, "", "   "])
    def test_blank_title(self, title):
        with pytest.raises(ValidationError, match="required"):
            validate_ticket_title(title)

    def test_title_length(self):
        validate_ticket_title("x" * 200)
        with pytest.raises(ValidationError, match="200"):
            validate_ticket_title("x" * 201)

    def test_message_length(self):
        validate_message_content("x" * 10_000)
        with pytest.raises(ValidationError, match="10,000"):
            validate_message_content("x" * 10_001)

    def test_status_transitions(self):
        """Test the ticket status machine."""
        validate_status_transition("open", "in_progress")
        validate_status_transition("waiting", "in_progress")
        validate_status_transition("closed", "closed")
        with pytest.raises(ValidationError):
            validate_status_transition("closed", "open")
        with pytest.raises(ValidationError):
            validate_status_transition("in_progress", "open")


class TestCreateTicket:
    """Tests for TicketService.create_ticket."""

    @pytest.fixture
    def service(self, store, dispatcher):
        return TicketService(store, dispatcher)

    @pytest.fixture
    def contract(self, store):
        return store.add_contract([
            ContractItem(id="item_1", text="Incident tickets", type="limit", value=2, limit_period="monthly"),
            ContractItem(id="item_2", text="Phone support", type="unlimited"),
        ])

    def test_without_item_skips_evaluator(self, store, service):
        """Test tickets with no contract item never reach the limit evaluator."""
        with patch("contractdesk.tickets.evaluate_item") as mock_evaluate:
            ticket = service.create_ticket(TENANT_ID, USER_ID, CreateTicketInput(title="Printer"), now=NOW)

        mock_evaluate.assert_not_called()
        assert ticket.status == "open"
        assert ticket.priority == "medium"
        assert ticket.contract_item_id is None
        assert "get_contract" not in store.calls

    def test_others_sentinel_is_unreferenced(self, store, service):
        ticket = service.create_ticket(
            TENANT_ID, USER_ID, CreateTicketInput(title="Misc", contract_item_id="others"), now=NOW
        )
        assert ticket.contract_item_id is None

    def test_limit_enforced_end_to_end(self, store, service, contract):
        """Test a monthly limit of 2 admits two tickets and refuses the third."""
        ticket_input = CreateTicketInput(title="Outage", contract_item_id=f"{contract.id}-item_1")

        first = service.create_ticket(TENANT_ID, USER_ID, ticket_input, now=NOW)
        second = service.create_ticket(TENANT_ID, USER_ID, ticket_input, now=NOW)
        assert first.contract_item_id == f"{contract.id}-item_1"
        assert second.id != first.id

        with pytest.raises(LimitExceededError) as exc_info:
            service.create_ticket(TENANT_ID, USER_ID, ticket_input, now=NOW)

        error = exc_info.value
        assert "2/2 tickets" in error.message
        assert error.result.current_count == 2
        assert error.result.limit == 2
        assert error.status_code == 409
        assert len(store.tickets) == 2

    def test_denied_creates_nothing(self, store, dispatcher, contract):
        """Test a denied request writes no ticket, message or activity."""
        ref = f"{contract.id}-item_1"
        store.add_ticket(ref)
        store.add_ticket(ref)
        service = TicketService(store, dispatcher)

        with pytest.raises(LimitExceededError):
            service.create_ticket(
                TENANT_ID,
                USER_ID,
                CreateTicketInput(title="Outage", initial_message="Help", contract_item_id=ref),
                now=NOW,
            )

        dispatcher.shutdown(wait=True)
        assert len(store.tickets) == 2
        assert store.messages == []
        assert store.activity == []
        assert "insert_ticket" not in store.calls
        assert "insert_ticket_within_limit" not in store.calls

    def test_unlimited_item_uses_plain_insert(self, store, service, contract):
        ticket = service.create_ticket(
            TENANT_ID,
            USER_ID,
            CreateTicketInput(title="Call me", contract_item_id=f"{contract.id}-item_2"),
            now=NOW,
        )
        assert ticket.contract_item_id == f"{contract.id}-item_2"
        assert "insert_ticket_within_limit" not in store.calls

    def test_race_lost_at_insert(self, store, service, contract):
        """Test a refused conditional insert is reported as a limit denial."""
        ref = f"{contract.id}-item_1"
        original = store.insert_ticket_within_limit

        def racing_insert(row, since, limit):
            # Another request takes the last two slots first
            store.add_ticket(ref)
            store.add_ticket(ref)
            return original(row, since, limit)

        store.insert_ticket_within_limit = racing_insert

        with pytest.raises(LimitExceededError) as exc_info:
            service.create_ticket(TENANT_ID, USER_ID, CreateTicketInput(title="t", contract_item_id=ref), now=NOW)

        assert exc_info.value.result.current_count == 2
        assert exc_info.value.message == "Limit reached: 2/2 tickets for this monthly period."
        assert len(store.tickets) == 2

    def test_invalid_title_rejected_before_store(self, store, service):
        with pytest.raises(ValidationError):
            service.create_ticket(TENANT_ID, USER_ID, CreateTicketInput(title="  "), now=NOW)
        assert store.calls == []

    def test_invalid_message_rejected_before_insert(self, store, service):
        """Test an oversize initial message fails before the ticket is written."""
        with pytest.raises(ValidationError):
            service.create_ticket(
                TENANT_ID, USER_ID, CreateTicketInput(title="t", initial_message="x" * 10_001), now=NOW
            )
        assert store.tickets == []

    def test_malformed_reference(self, service):
        with pytest.raises(InvalidReferenceError):
            service.create_ticket(TENANT_ID, USER_ID, CreateTicketInput(title="t", contract_item_id="bad"), now=NOW)

    def test_missing_item(self, service, contract):
        with pytest.raises(NotFoundError, match="Contract item not found"):
            service.create_ticket(
                TENANT_ID, USER_ID, CreateTicketInput(title="t", contract_item_id=f"{contract.id}-zzz"), now=NOW
            )

    def test_initial_message_stored(self, store, service):
        ticket = service.create_ticket(
            TENANT_ID, USER_ID, CreateTicketInput(title="t", initial_message="It broke"), now=NOW
        )
        assert len(store.messages) == 1
        assert store.messages[0].ticket_id == ticket.id
        assert store.messages[0].is_internal_note is False

    def test_message_failure_rolls_back_ticket(self, store, service):
        """Test a failed initial message leaves no ticket behind."""
        store.failing.add("insert_message")

        with pytest.raises(StoreError):
            service.create_ticket(TENANT_ID, USER_ID, CreateTicketInput(title="t", initial_message="Hi"), now=NOW)

        assert store.tickets == []
        assert "delete_ticket" in store.calls

    def test_activity_logged_in_background(self, store, dispatcher):
        service = TicketService(store, dispatcher)
        ticket = service.create_ticket(TENANT_ID, USER_ID, CreateTicketInput(title="t", priority="high"), now=NOW)

        dispatcher.shutdown(wait=True)
        assert store.activity[0]["action_type"] == "ticket_created"
        assert store.activity[0]["entity_id"] == ticket.id
        assert store.activity[0]["metadata"]["priority"] == "high"

    def test_side_effect_failure_does_not_fail_creation(self, store, dispatcher):
        """Test failing notifications and activity logging are swallowed."""
        store.failing.add("insert_activity")
        notifier = MagicMock()
        notifier.notify_tenant_users.side_effect = RuntimeError("smtp down")
        notifier.notify_admin.side_effect = RuntimeError("smtp down")
        service = TicketService(store, dispatcher, notifier=notifier)

        ticket = service.create_ticket(TENANT_ID, USER_ID, CreateTicketInput(title="t"), now=NOW)

        dispatcher.shutdown(wait=True)
        assert ticket in store.tickets
        notifier.notify_tenant_users.assert_called_once_with(ticket, USER_ID)
        notifier.notify_admin.assert_called_once_with(ticket, None)


class TestAddMessage:
    """Tests for TicketService.add_message."""

    @pytest.fixture
    def ticket(self, store):
        return store.add_ticket(None)

    def test_add_message(self, store, dispatcher, ticket):
        notifier = MagicMock()
        service = TicketService(store, dispatcher, notifier=notifier)

        message = service.add_message(TENANT_ID, USER_ID, "tenant_user", ticket.id, "Any update?")

        dispatcher.shutdown(wait=True)
        assert message.content == "Any update?"
        assert store.activity[0]["action_type"] == "message_added"
        notifier.notify_message_added.assert_called_once_with(ticket, USER_ID)

    def test_internal_note_not_notified(self, store, dispatcher, ticket):
        notifier = MagicMock()
        service = TicketService(store, dispatcher, notifier=notifier)

        service.add_message(TENANT_ID, "admin-1", "super_admin", ticket.id, "Check logs", is_internal_note=True)

        dispatcher.shutdown(wait=True)
        notifier.notify_message_added.assert_not_called()

    def test_tenant_user_cannot_post_internal_note(self, store, dispatcher, ticket):
        service = TicketService(store, dispatcher)
        with pytest.raises(ForbiddenError):
            service.add_message(TENANT_ID, USER_ID, "tenant_user", ticket.id, "Secret", is_internal_note=True)
        assert store.messages == []

    def test_unknown_ticket(self, store, dispatcher):
        service = TicketService(store, dispatcher)
        with pytest.raises(NotFoundError):
            service.add_message(TENANT_ID, USER_ID, "tenant_user", "missing", "Hello")

    def test_blank_content(self, store, dispatcher, ticket):
        service = TicketService(store, dispatcher)
        with pytest.raises(ValidationError):
            service.add_message(TENANT_ID, USER_ID, "tenant_user", ticket.id, "   ")
