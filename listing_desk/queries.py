"""Filtering, sorting and filter facets over a table's records."""

from collections.abc import Iterable, Sequence

from pydantic import BaseModel, Field

from .errors import InvalidInput
from .schemas import PropertyRecord

SORTABLE_FIELDS = ("price", "area_sqm", "bedrooms", "bathrooms")


class TableFacets(BaseModel):
    """Distinct values offered as filter chips, each list sorted."""

    statuses: list[str] = Field(default_factory=list)
    neighborhoods: list[str] = Field(default_factory=list)
    agencies: list[str] = Field(default_factory=list)
    property_types: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)


def filter_by_tags(records: Iterable[PropertyRecord], active_tags: Iterable[str]) -> list[PropertyRecord]:
    """Records carrying every active tag. No active tags keeps everything."""
    wanted = [tag for tag in active_tags if tag]
    return [record for record in records if all(tag in record.tags for tag in wanted)]


def sort_records(
    records: Iterable[PropertyRecord], key: str | None, descending: bool = False
) -> list[PropertyRecord]:
    """Stable sort on a numeric column; missing values count as 0."""
    records = list(records)
    if not key:
        return records
    if key not in SORTABLE_FIELDS:
        raise InvalidInput(f"cannot sort by {key!r}; expected one of {', '.join(SORTABLE_FIELDS)}")
    return sorted(records, key=lambda record: getattr(record, key) or 0, reverse=descending)


def facets(records: Sequence[PropertyRecord]) -> TableFacets:
    return TableFacets(
        statuses=sorted({record.status.value for record in records}),
        neighborhoods=sorted({record.neighborhood for record in records if record.neighborhood}),
        agencies=sorted({record.agency_name for record in records if record.agency_name}),
        property_types=sorted({record.property_type.value for record in records}),
        categories=sorted({category.value for record in records for category in record.categories}),
    )
