"""Tests for filtering, sorting and facets."""

import pytest

from listing_desk.errors import InvalidInput
from listing_desk.queries import facets, filter_by_tags, sort_records
from listing_desk.schemas import PropertyRecord


@pytest.fixture
def records(listing_data) -> list[PropertyRecord]:
    rows = [
        dict(unit_number="1", price=900000, area_sqm=150, bedrooms=4, neighborhood="Centro", categories=["FRONT"]),
        dict(
            unit_number="2", price=450000, area_sqm=70, bedrooms=2, agency_name=None, status="SOLD_THIS_MONTH",
            categories=[],
        ),
        dict(unit_number="3", price=650000, area_sqm=95, bedrooms=3, property_type="HOUSE", categories=[]),
    ]
    return [
        PropertyRecord.model_validate({**listing_data(**row), "id": f"id-{row['unit_number']}"}) for row in rows
    ]


class TestFilterByTags:
    def test_no_active_tags_keeps_everything(self, records) -> None:
        assert filter_by_tags(records, []) == records

    def test_record_must_carry_every_tag(self, records) -> None:
        assert [r.unit_number for r in filter_by_tags(records, ["Meia Praia"])] == ["2", "3"]
        assert [r.unit_number for r in filter_by_tags(records, ["Meia Praia", "HOUSE"])] == ["3"]
        assert filter_by_tags(records, ["Centro", "HOUSE"]) == []


class TestSortRecords:
    def test_sort_by_price(self, records) -> None:
        assert [r.unit_number for r in sort_records(records, "price")] == ["2", "3", "1"]
        assert [r.unit_number for r in sort_records(records, "price", descending=True)] == ["1", "3", "2"]

    def test_no_key_keeps_table_order(self, records) -> None:
        assert sort_records(records, None) == records

    def test_unknown_key(self, records) -> None:
        with pytest.raises(InvalidInput):
            sort_records(records, "broker_name")

    def test_stable_for_equal_values(self, records) -> None:
        assert [r.unit_number for r in sort_records(records, "bathrooms")] == ["1", "2", "3"]


class TestFacets:
    def test_distinct_sorted_values(self, records) -> None:
        result = facets(records)
        assert result.statuses == ["AVAILABLE", "SOLD_THIS_MONTH"]
        assert result.neighborhoods == ["Centro", "Meia Praia"]
        assert result.agencies == ["Maré Imóveis"]
        assert result.property_types == ["APARTMENT", "HOUSE"]
        assert result.categories == ["FRONT"]

    def test_empty_table(self) -> None:
        assert facets([]).statuses == []
