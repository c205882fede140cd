"""
Unit Tests - History Arrays
"""
from datetime import date
from decimal import Decimal

import pytest

from salesdw.cumulative.delta import aggregate_delta
from salesdw.cumulative.history import (
    HistoryEntry,
    HistoryUnnest,
    append_history,
    entries_from_value,
    unnest_history,
)
from salesdw.cumulative.merge import merge
from salesdw.cumulative.tables import CUSTOMER_REVENUE, CUSTOMER_SALES_HISTORY


def entry(year, amount, discount="0.00", quantity=1):
    return HistoryEntry(year, Decimal(discount), Decimal(amount), quantity)


class TestAppendHistory:
    """Tests for append_history"""

    def test_first_activity_starts_array(self):
        assert append_history(None, entry(2023, "5.00")) == [entry(2023, "5.00")]

    def test_no_array_no_activity(self):
        assert append_history(None, None) == []

    def test_activity_appends(self):
        previous = [entry(2023, "5.00")]
        result = append_history(previous, entry(2024, "7.00"))
        assert result == [entry(2023, "5.00"), entry(2024, "7.00")]
        assert previous == [entry(2023, "5.00")]

    def test_inactivity_leaves_array_unchanged(self):
        previous = [entry(2023, "5.00")]
        assert append_history(previous, None) == previous

    def test_no_reordering_or_dedup(self):
        previous = [entry(2024, "1.00")]
        result = append_history(previous, entry(2024, "1.00"))
        assert [e.period for e in result] == [2024, 2024]

    def test_json_round_trip_keeps_decimals(self):
        original = entry(2023, "12.30", discount="0.15", quantity=4)
        assert HistoryEntry.from_mapping(original.to_json()) == original

    def test_entries_from_none(self):
        assert entries_from_value(None) is None


class TestHistoryMerge:
    """History arrays built period by period"""

    def build(self, facts, years):
        snapshot = CUSTOMER_SALES_HISTORY.empty_snapshot()
        for year in years:
            delta = aggregate_delta(facts, CUSTOMER_SALES_HISTORY, year)
            snapshot = merge(snapshot, delta, CUSTOMER_SALES_HISTORY, year)
        return snapshot

    def test_monotonic_append(self, make_facts):
        """Active in 2023 and 2024, inactive in 2025: two entries, stamped 2025"""
        facts = make_facts([
            {"customer_id": 1, "amount": "10.00", "discount": "0.10", "quantity": 2,
             "invoice_date": date(2023, 4, 1)},
            {"customer_id": 1, "amount": "5.00", "discount": "0.00", "quantity": 1,
             "invoice_date": date(2023, 9, 1)},
            {"customer_id": 1, "amount": "8.00", "discount": "0.05", "quantity": 3,
             "invoice_date": date(2024, 2, 1)},
        ])

        snapshot = self.build(facts, [2023, 2024, 2025])

        assert snapshot["current_year"].to_list() == [2025]
        entries = entries_from_value(snapshot["sales_stats"].to_list()[0])
        assert entries == [
            HistoryEntry(2023, Decimal("0.10"), Decimal("15.00"), 3),
            HistoryEntry(2024, Decimal("0.05"), Decimal("8.00"), 3),
        ]

    def test_late_customer_starts_fresh(self, make_facts):
        facts = make_facts([
            {"customer_id": 1, "amount": "1.00", "invoice_date": date(2023, 1, 1)},
            {"customer_id": 2, "customer_no": "CUST-000002", "amount": "2.00",
             "invoice_date": date(2024, 1, 1)},
        ])

        snapshot = self.build(facts, [2023, 2024])
        histories = {
            row["customer_id"]: [e["period"] for e in row["sales_stats"]]
            for row in snapshot.to_dicts()
        }

        assert histories == {1: [2023], 2: [2024]}


class TestUnnest:
    """Tests for unnest_history and HistoryUnnest"""

    @pytest.fixture
    def snapshot(self, make_facts):
        facts = make_facts([
            {"customer_id": 1, "amount": "3.00", "invoice_date": date(2023, 1, 1)},
            {"customer_id": 1, "amount": "4.00", "invoice_date": date(2024, 1, 1)},
            {"customer_id": 2, "customer_no": "CUST-000002", "amount": "6.00",
             "invoice_date": date(2024, 6, 1)},
        ])
        snapshot = CUSTOMER_SALES_HISTORY.empty_snapshot()
        for year in (2023, 2024):
            snapshot = merge(
                snapshot, aggregate_delta(facts, CUSTOMER_SALES_HISTORY, year), CUSTOMER_SALES_HISTORY, year
            )
        return snapshot

    def test_frame_unnest(self, snapshot):
        rows = unnest_history(snapshot, CUSTOMER_SALES_HISTORY)

        assert rows.columns == [
            "customer_id", "customer_no", "period", "total_discount", "total_amount", "total_quantity",
        ]
        assert rows.select("customer_id", "period").rows() == [(1, 2023), (1, 2024), (2, 2024)]

    def test_lazy_unnest_is_restartable(self, snapshot):
        unnest = HistoryUnnest(snapshot, CUSTOMER_SALES_HISTORY)

        first = [(identity["customer_id"], e.period) for identity, e in unnest]
        second = [(identity["customer_id"], e.period) for identity, e in unnest]

        assert first == second == [(1, 2023), (1, 2024), (2, 2024)]
        assert len(unnest) == 3

    def test_identity_carries_labels(self, snapshot):
        identity, first = next(iter(HistoryUnnest(snapshot, CUSTOMER_SALES_HISTORY)))
        assert identity == {"customer_id": 1, "customer_no": "CUST-000001"}
        assert first.total_amount == Decimal("3.00")

    def test_table_without_history_rejected(self, snapshot):
        with pytest.raises(ValueError):
            HistoryUnnest(snapshot, CUSTOMER_REVENUE)
