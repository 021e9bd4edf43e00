"""Tests for the activity log."""

from conftest import TENANT_ID, USER_ID

from contractdesk.activity import log_activity


class TestLogActivity:
    """Tests for log_activity."""

    def test_writes_row(self, store):
        assert log_activity(store, TENANT_ID, USER_ID, "ticket_created", "ticket", "tk1", {"title": "t"}) is True
        assert store.activity == [{
            "tenant_id": TENANT_ID,
            "user_id": USER_ID,
            "action_type": "ticket_created",
            "entity_type": "ticket",
            "entity_id": "tk1",
            "metadata": {"title": "t"},
        }]

    def test_empty_metadata_is_null(self, store):
        log_activity(store, TENANT_ID, USER_ID, "contract_updated", "contract", "c1", {})
        assert store.activity[0]["metadata"] is None

    def test_store_failure_swallowed(self, store):
        """Test a failed write reports False instead of raising."""
        store.failing.add("insert_activity")
        assert log_activity(store, TENANT_ID, USER_ID, "ticket_created", "ticket", "tk1") is False
