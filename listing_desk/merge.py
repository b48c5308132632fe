"""Table merge: turn reviewed candidates into saved listings."""

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from .errors import ValidationError
from .repository import ListingRepository
from .schemas import CandidateRecord, ListingInput, PropertyRecord, new_listing_ids

logger = logging.getLogger(__name__)


class TableMerge:
    """Commits staged candidates into a listing table.

    A commit is all-or-nothing: one invalid candidate rejects the batch, and
    the repository writes the rest in a single transaction.
    """

    def __init__(self, repository: ListingRepository):
        self.repository = repository

    def build_records(
        self, candidates: Sequence[CandidateRecord], now: datetime | None = None
    ) -> list[PropertyRecord]:
        """Validate every candidate and give it an id and timestamps.

        Raises:
            ValidationError: with the field errors of each failing candidate.
        """
        errors: dict[int, dict[str, str]] = {}
        for index, candidate in enumerate(candidates):
            candidate_errors = candidate.field_errors()
            if candidate_errors:
                errors[index] = candidate_errors
        if errors:
            raise ValidationError(errors)

        now = now or datetime.now(timezone.utc)
        ids = new_listing_ids(len(candidates), now)
        return [
            PropertyRecord.from_details(
                listing_id, candidate.to_details(), user_tags=candidate.user_tags, created_at=now
            )
            for listing_id, candidate in zip(ids, candidates)
        ]

    def commit(self, table_id: uuid.UUID, candidates: Sequence[CandidateRecord]) -> list[PropertyRecord]:
        """Prepend the candidates to the table, in batch order.

        Existing listings are never touched and no deduplication is done.

        Raises:
            ValidationError: a candidate is not committable. Nothing is written.
            NotFoundError: the table does not exist.
            PersistenceError: the write failed. Nothing is written.
        """
        records = self.build_records(candidates)
        if not records:
            return []
        self.repository.append(table_id, records)
        logger.info(f"Committed {len(records)} listings to table {table_id}")
        return records

    def add(self, table_id: uuid.UUID, listing: ListingInput) -> PropertyRecord:
        """Save one hand-entered listing at the top of the table."""
        now = datetime.now(timezone.utc)
        (listing_id,) = new_listing_ids(1, now)
        record = PropertyRecord.from_details(listing_id, listing, user_tags=listing.user_tags, created_at=now)
        return self.repository.add_listing(table_id, record)
