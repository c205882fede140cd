"""
Unit Tests - SCD Type 2 Rules
"""
from datetime import date

import pytest

from salesdw.dimensions.scd2 import SCD2Record, build_versions, reconcile
from salesdw.exceptions import AttributeChangeOrderError


class TestReconcile:
    """Tests for reconcile"""

    def test_first_change_opens_version(self):
        change = reconcile(None, 1, "123 Main St", date(2024, 1, 1))

        assert change.changed
        assert change.closed is None
        assert change.current == SCD2Record(1, "123 Main St", date(2024, 1, 1))

    def test_same_value_is_noop(self):
        current = SCD2Record(1, "123 Main St", date(2024, 1, 1))

        change = reconcile(current, 1, "123 Main St", date(2024, 3, 1))

        assert not change.changed
        assert change.current is current

    def test_new_value_closes_and_opens(self):
        current = SCD2Record(1, "123 Main St", date(2024, 1, 1))

        change = reconcile(current, 1, "456 Oak Ave", date(2024, 6, 1))

        assert change.closed.end_date == date(2024, 6, 1)
        assert change.closed.is_current is False
        assert change.opened.start_date == date(2024, 6, 1)
        assert change.opened.end_date is None

    @pytest.mark.parametrize("effective", [date(2024, 1, 1), date(2023, 12, 1)])
    def test_change_not_after_open_version_rejected(self, effective):
        current = SCD2Record(1, "123 Main St", date(2024, 1, 1))

        with pytest.raises(AttributeChangeOrderError):
            reconcile(current, 1, "456 Oak Ave", effective)


class TestBuildVersions:
    """Tests for build_versions"""

    def test_address_history(self):
        versions = build_versions([
            (1, "123 Main St", date(2024, 1, 1)),
            (1, "456 Oak Ave", date(2024, 6, 1)),
        ])

        assert [v.to_dict() for v in versions] == [
            {"entity_id": 1, "value": "123 Main St", "start_date": date(2024, 1, 1),
             "end_date": date(2024, 6, 1), "is_current": False},
            {"entity_id": 1, "value": "456 Oak Ave", "start_date": date(2024, 6, 1),
             "end_date": None, "is_current": True},
        ]

    def test_intervals_tile_without_overlap(self):
        versions = build_versions([
            (7, "A", date(2023, 1, 1)),
            (7, "B", date(2023, 4, 1)),
            (7, "B", date(2023, 5, 1)),
            (7, "C", date(2023, 9, 1)),
        ])

        assert [v.value for v in versions] == ["A", "B", "C"]
        for earlier, later in zip(versions, versions[1:]):
            assert earlier.end_date == later.start_date
        assert sum(v.is_current for v in versions) == 1

    def test_point_in_time_lookup(self):
        versions = build_versions([
            (1, "123 Main St", date(2024, 1, 1)),
            (1, "456 Oak Ave", date(2024, 6, 1)),
        ])

        def as_of(day):
            return [v.value for v in versions if v.covers(day)]

        assert as_of(date(2023, 12, 31)) == []
        assert as_of(date(2024, 3, 1)) == ["123 Main St"]
        assert as_of(date(2024, 6, 1)) == ["456 Oak Ave"]

    def test_entities_are_independent(self):
        versions = build_versions([
            (1, "X", date(2024, 1, 1)),
            (2, "Y", date(2023, 1, 1)),
            (1, "Z", date(2024, 2, 1)),
        ])

        assert [(v.entity_id, v.value, v.is_current) for v in versions] == [
            (1, "X", False),
            (1, "Z", True),
            (2, "Y", True),
        ]
