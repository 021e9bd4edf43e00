"""Tests for the usage aggregator."""

from datetime import datetime, timedelta, timezone
from functools import cmp_to_key

import pytest

from conftest import NOW, TENANT_ID

from contractdesk.models import ContractItem, ContractItemUsage
from contractdesk.store import StoreError
from contractdesk.usage import build_item_usage, compare_usage, get_usage_stats, get_usage_trend


BASE = {
    "contract_item_id": "c1-i1",
    "contract_id": "c1",
    "contract_title": "Support",
    "item_text": "Tickets",
    "item_type": "limit",
}


def usage(ticket_count, limit=None, percentage=0.0, item_id="i"):
    return ContractItemUsage(
        **{**BASE, "contract_item_id": item_id},
        ticket_count=ticket_count,
        limit=limit,
        usage_percentage=percentage,
    )


class TestBuildItemUsage:
    """Tests for per-item usage derivation."""

    def test_at_limit(self):
        result = build_item_usage(BASE, 5, 5)
        assert result.usage_percentage == 100.0
        assert result.is_at_limit is True
        assert result.is_near_limit is False

    def test_near_limit(self):
        result = build_item_usage(BASE, 4, 5)
        assert result.usage_percentage == 80.0
        assert result.is_near_limit is True
        assert result.is_at_limit is False

    def test_below_near_limit(self):
        result = build_item_usage(BASE, 3, 5)
        assert result.is_near_limit is False

    def test_over_limit_is_at_limit(self):
        result = build_item_usage(BASE, 7, 5)
        assert result.is_at_limit is True
        assert result.usage_percentage == 140.0

    def test_no_limit(self):
        result = build_item_usage(BASE, 9, None)
        assert result.usage_percentage == 0.0
        assert result.is_at_limit is False
        assert result.is_near_limit is False


class TestCompareUsage:
    """Tests for the dashboard ordering."""

    def test_limited_pair_by_percentage(self):
        items = [usage(1, 10, 10.0, "a"), usage(1, 2, 50.0, "b")]
        ordered = sorted(items, key=cmp_to_key(compare_usage))
        assert [u.contract_item_id for u in ordered] == ["b", "a"]

    def test_mixed_pair_by_count(self):
        """Test a pair with an unlimited item compares by ticket count."""
        items = [usage(1, 2, 50.0, "limited"), usage(6, None, 0.0, "unlimited")]
        ordered = sorted(items, key=cmp_to_key(compare_usage))
        assert [u.contract_item_id for u in ordered] == ["unlimited", "limited"]


class TestGetUsageStats:
    """Tests for get_usage_stats."""

    @pytest.fixture
    def contract(self, store):
        return store.add_contract([
            ContractItem(id="lim", text="Incidents", type="limit", value=5, limit_period="quarterly"),
            ContractItem(id="near", text="Changes", type="limit", value=5, limit_period="monthly"),
            ContractItem(id="unl", text="Phone", type="unlimited"),
            ContractItem(id="txt", text="Account manager", type="text"),
        ])

    def test_snapshot(self, store, contract):
        """Test totals, flags and exclusion of text items."""
        for _ in range(5):
            store.add_ticket(f"{contract.id}-lim")
        for _ in range(4):
            store.add_ticket(f"{contract.id}-near")
        store.add_ticket(f"{contract.id}-unl")
        store.add_ticket(None)

        stats = get_usage_stats(store, TENANT_ID, now=NOW)

        assert stats.total_items == 3
        assert stats.items_with_limits == 2
        assert stats.items_at_limit == 1
        assert stats.items_near_limit == 1
        assert stats.total_tickets == 10
        assert f"{contract.id}-txt" not in [u.contract_item_id for u in stats.usage_by_item]
        assert stats.usage_by_item[0].contract_item_id == f"{contract.id}-lim"

    def test_periods_per_item(self, store, contract):
        """Test each item is counted over its own period."""
        # Q3 and July both start on July 1
        store.add_ticket(f"{contract.id}-lim", created_at=datetime(2024, 6, 20, tzinfo=timezone.utc))
        store.add_ticket(f"{contract.id}-lim", created_at=datetime(2024, 7, 2, tzinfo=timezone.utc))
        store.add_ticket(f"{contract.id}-near", created_at=datetime(2024, 6, 30, tzinfo=timezone.utc))

        stats = get_usage_stats(store, TENANT_ID, now=NOW)
        counts = {u.contract_item_id: u.ticket_count for u in stats.usage_by_item}

        assert counts[f"{contract.id}-lim"] == 1
        assert counts[f"{contract.id}-near"] == 0

    def test_failed_count_omits_item(self, store, contract, monkeypatch):
        """Test a failing count drops that item only."""
        original = store.count_tickets

        def flaky_count(tenant_id, ref, since):
            if ref.endswith("-near"):
                raise StoreError("timeout")
            return original(tenant_id, ref, since)

        monkeypatch.setattr(store, "count_tickets", flaky_count)

        stats = get_usage_stats(store, TENANT_ID, now=NOW)

        assert stats.total_items == 2
        assert f"{contract.id}-near" not in [u.contract_item_id for u in stats.usage_by_item]

    def test_contract_load_failure_raises(self, store):
        store.failing.add("list_contracts")
        with pytest.raises(StoreError):
            get_usage_stats(store, TENANT_ID, now=NOW)

    def test_no_contracts(self, store):
        stats = get_usage_stats(store, TENANT_ID, now=NOW)
        assert stats.total_items == 0
        assert stats.usage_by_item == []


class TestGetUsageTrend:
    """Tests for get_usage_trend."""

    def test_zero_filled_days(self, store):
        contract = store.add_contract([ContractItem(id="i1", text="Incidents", type="limit", value=5)])
        ref = f"{contract.id}-i1"
        store.add_ticket(ref, created_at=NOW)
        store.add_ticket(ref, created_at=NOW - timedelta(hours=1))
        store.add_ticket(ref, created_at=NOW - timedelta(days=2))
        store.add_ticket(ref, created_at=NOW - timedelta(days=10))

        points = get_usage_trend(store, TENANT_ID, ref, days=7, now=NOW)

        assert len(points) == 7
        assert points[0].date == "2024-07-09"
        assert points[-1].date == "2024-07-15"
        assert points[-1].count == 2
        assert points[-3].count == 1
        assert sum(p.count for p in points) == 3
