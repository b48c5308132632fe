"""Tests for TableMerge commits."""

import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from listing_desk.errors import NotFoundError, ValidationError
from listing_desk.merge import TableMerge
from listing_desk.repository import SqlListingRepository
from listing_desk.schemas import CandidateRecord, ListingInput


def candidates(listing_data, *units: str, **overrides) -> list[CandidateRecord]:
    return [CandidateRecord.model_validate(listing_data(unit_number=unit, **overrides)) for unit in units]


class TestCommit:
    def test_prepends_in_batch_order(self, repository, table, listing_data) -> None:
        merge = TableMerge(repository)
        merge.commit(table.id, candidates(listing_data, "old-1", "old-2"))
        existing = repository.get_table(table.id).records

        merge.commit(table.id, candidates(listing_data, "new-1", "new-2", "new-3"))
        records = repository.get_table(table.id).records

        assert [record.unit_number for record in records] == ["new-1", "new-2", "new-3", "old-1", "old-2"]
        assert records[3:] == existing

    def test_assigns_unique_ids_and_timestamps(self, repository, table, listing_data) -> None:
        committed = TableMerge(repository).commit(table.id, candidates(listing_data, "1", "2", "3"))
        assert len({record.id for record in committed}) == 3
        assert all(record.created_at is not None for record in committed)
        assert all(record.created_at == record.updated_at for record in committed)

    def test_committed_records_carry_tags(self, repository, table, listing_data) -> None:
        batch = [CandidateRecord.model_validate({**listing_data(), "tags": ["vip"]})]
        TableMerge(repository).commit(table.id, batch)
        (record,) = repository.get_table(table.id).records
        assert record.tags == ["vip", "Meia Praia", "Maré Imóveis", "APARTMENT", "AVAILABLE", "FRONT", "SEA_VIEW"]

    def test_invalid_candidate_rejects_whole_batch(self, repository, table, listing_data) -> None:
        batch = candidates(listing_data, "1", "2")
        batch.append(CandidateRecord.model_validate(listing_data(price="not-a-number", broker_name="")))
        with pytest.raises(ValidationError) as exc_info:
            TableMerge(repository).commit(table.id, batch)
        assert exc_info.value.errors == {
            2: {"price": "Deve ser um número.", "broker_name": "Campo obrigatório."}
        }
        assert repository.get_table(table.id).records == []

    def test_duplicates_are_appended(self, repository, table, listing_data) -> None:
        merge = TableMerge(repository)
        merge.commit(table.id, candidates(listing_data, "1201"))
        merge.commit(table.id, candidates(listing_data, "1201"))
        assert len(repository.get_table(table.id).records) == 2

    def test_empty_batch_writes_nothing(self, repository, table) -> None:
        assert TableMerge(repository).commit(table.id, []) == []
        assert repository.get_table(table.id).listing_count == 0

    def test_unknown_table(self, repository, listing_data) -> None:
        with pytest.raises(NotFoundError):
            TableMerge(repository).commit(uuid.uuid4(), candidates(listing_data, "1"))

    def test_concurrent_commits_lose_nothing(self, session_factory, table, listing_data) -> None:
        TableMerge(SqlListingRepository(session_factory)).commit(table.id, candidates(listing_data, "orig-1", "orig-2"))

        def commit(prefix: str):
            merge = TableMerge(SqlListingRepository(session_factory))
            return merge.commit(table.id, candidates(listing_data, f"{prefix}-1", f"{prefix}-2", f"{prefix}-3"))

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(commit, ["a", "b"]))

        records = SqlListingRepository(session_factory).get_table(table.id).records
        units = [record.unit_number for record in records]
        assert len(records) == 8
        assert units[-2:] == ["orig-1", "orig-2"]
        assert {record.id for batch in results for record in batch} <= {record.id for record in records}
        # Each batch stays contiguous and in order
        for prefix in ("a", "b"):
            start = units.index(f"{prefix}-1")
            assert units[start : start + 3] == [f"{prefix}-1", f"{prefix}-2", f"{prefix}-3"]


class TestAdd:
    def test_add_listing_goes_to_top(self, repository, table, listing_data) -> None:
        merge = TableMerge(repository)
        merge.commit(table.id, candidates(listing_data, "1"))
        record = merge.add(table.id, ListingInput.model_validate({**listing_data(unit_number="2"), "tags": "vip"}))

        records = repository.get_table(table.id).records
        assert records[0].id == record.id
        assert records[0].tags[0] == "vip"
