"""
Integration Tests - Customer Address Versioning
"""
from datetime import date

import polars as pl
import pytest

from salesdw.dimensions.scd2 import AddressVersioner
from salesdw.exceptions import AttributeChangeOrderError


@pytest.fixture
def versioner(session_factory, lookups) -> AddressVersioner:
    return AddressVersioner(session_factory)


class TestAddressVersioner:
    """Tests for AddressVersioner"""

    @pytest.mark.asyncio
    async def test_move_closes_previous_version(self, versioner):
        await versioner.apply_attribute_change(1, "123 Main St", date(2024, 1, 1))
        change = await versioner.apply_attribute_change(1, "456 Oak Ave", date(2024, 6, 1))

        assert change.changed
        assert change.closed.value == "123 Main St"
        assert change.current.version_id is not None

        history = await versioner.history(1)
        assert [(v.value, v.start_date, v.end_date, v.is_current) for v in history] == [
            ("123 Main St", date(2024, 1, 1), date(2024, 6, 1), False),
            ("456 Oak Ave", date(2024, 6, 1), None, True),
        ]

    @pytest.mark.asyncio
    async def test_point_in_time_lookup(self, versioner):
        await versioner.apply_attribute_change(1, "123 Main St", date(2024, 1, 1))
        await versioner.apply_attribute_change(1, "456 Oak Ave", date(2024, 6, 1))

        assert await versioner.value_as_of(1, date(2023, 12, 31)) is None
        assert await versioner.value_as_of(1, date(2024, 3, 1)) == "123 Main St"
        assert await versioner.value_as_of(1, date(2024, 5, 31)) == "123 Main St"
        assert await versioner.value_as_of(1, date(2024, 6, 1)) == "456 Oak Ave"

    @pytest.mark.asyncio
    async def test_same_address_is_noop(self, versioner):
        await versioner.apply_attribute_change(2, "9 Elm Rd", date(2024, 1, 1))

        change = await versioner.apply_attribute_change(2, "9 Elm Rd", date(2024, 2, 1))

        assert not change.changed
        assert len(await versioner.history(2)) == 1

    @pytest.mark.asyncio
    async def test_backdated_change_rejected(self, versioner):
        await versioner.apply_attribute_change(1, "123 Main St", date(2024, 1, 1))

        with pytest.raises(AttributeChangeOrderError):
            await versioner.apply_attribute_change(1, "456 Oak Ave", date(2024, 1, 1))

        current = await versioner.current_version(1)
        assert current.value == "123 Main St"
        assert current.end_date is None

    @pytest.mark.asyncio
    async def test_apply_feed(self, versioner):
        feed = pl.DataFrame({
            "customer_id": [1, 2, 1],
            "address": ["123 Main St", "9 Elm Rd", "456 Oak Ave"],
            "effective_date": [date(2024, 1, 1), date(2024, 1, 1), date(2024, 6, 1)],
        })

        changes = await versioner.apply_changes(feed)

        assert [c.changed for c in changes] == [True, True, True]
        assert (await versioner.current_version(1)).value == "456 Oak Ave"
        assert (await versioner.current_version(2)).value == "9 Elm Rd"
        assert await versioner.current_version(3) is None
