"""Review of extracted listings before they are saved.

StagingStore holds the candidates of one import while the user corrects
them. ImportSession drives one import from upload to commit:

    IDLE -> AWAITING_DOCUMENT -> EXTRACTING -> STAGED -> COMMITTED -> IDLE

An extraction failure returns the session to IDLE. A commit writes the
candidates that are ready and keeps the flagged ones STAGED so the user can
fix them and commit again; a failed write keeps the whole batch. Cancel always
returns to IDLE and throws away whatever was staged.
"""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .agent import DocumentExtractor
from .documents import DocumentRef, describe_data_uri
from .errors import ExtractionError, InvalidInput, InvalidSessionState, ListingDeskError, ValidationError
from .merge import TableMerge
from .schemas import CandidateRecord, PropertyRecord

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(CandidateRecord.model_fields)


class SessionState(str, Enum):
    IDLE = "IDLE"
    AWAITING_DOCUMENT = "AWAITING_DOCUMENT"
    EXTRACTING = "EXTRACTING"
    STAGED = "STAGED"
    COMMITTED = "COMMITTED"


@dataclass
class ImportBatch:
    """What one extraction produced."""

    candidates: list[CandidateRecord] = field(default_factory=list)
    raw_text: str | None = None
    document: DocumentRef | None = None

    @property
    def is_empty(self) -> bool:
        return not self.candidates


class StagingStore:
    """Candidate records under review. Edits never fail on bad values;
    they only change what the record reports as field errors."""

    def __init__(self):
        self.candidates: list[CandidateRecord] = []

    def __len__(self) -> int:
        return len(self.candidates)

    def stage(self, candidates: Iterable[CandidateRecord]) -> None:
        """Replace the staged batch."""
        self.candidates = list(candidates)

    def update_field(self, index: int, field_name: str, value: Any) -> str | None:
        """Set one field and return its current error message, if any.

        Raises:
            InvalidInput: unknown field, or a value of the wrong shape
                (e.g. an object where text is expected).
            IndexError: no candidate at ``index``.
        """
        if field_name not in EDITABLE_FIELDS:
            raise InvalidInput(f"unknown listing field: {field_name}")
        candidate = self.candidates[index]

        data = candidate.model_dump()
        data[field_name] = value
        try:
            updated = CandidateRecord.model_validate(data)
        except PydanticValidationError as e:
            raise InvalidInput(f"cannot set {field_name}: {e.errors()[0]['msg']}") from e

        self.candidates[index] = updated
        return updated.field_error(field_name)

    def remove_candidate(self, index: int) -> CandidateRecord:
        return self.candidates.pop(index)

    def add_blank(self) -> int:
        """Append an empty candidate for manual entry and return its index."""
        self.candidates.append(CandidateRecord())
        return len(self.candidates) - 1

    def field_errors(self, index: int) -> dict[str, str]:
        return self.candidates[index].field_errors()

    def is_committable(self, index: int) -> bool:
        return self.candidates[index].is_committable

    def blocking_errors(self) -> dict[int, dict[str, str]]:
        """Field errors of every candidate that would block a commit."""
        errors = {}
        for index, candidate in enumerate(self.candidates):
            candidate_errors = candidate.field_errors()
            if candidate_errors:
                errors[index] = candidate_errors
        return errors

    def clear(self) -> None:
        self.candidates = []


async def extract_batch(
    extractor: DocumentExtractor,
    document_data_uri: str,
    filename: str | None = None,
    ocr_fallback: bool = True,
) -> ImportBatch:
    """Run structured extraction, falling back to OCR when nothing is found.

    A failing fallback is logged and leaves ``raw_text`` unset; the empty
    batch is still returned.
    """
    document = describe_data_uri(document_data_uri, filename)
    candidates = await extractor.extract_records(document_data_uri)

    raw_text = None
    if not candidates and ocr_fallback:
        logger.info("No listings found, running OCR fallback")
        try:
            raw_text = await extractor.extract_text(document_data_uri)
        except ExtractionError as e:
            logger.warning(f"OCR fallback failed ({e.kind}): {e}")

    return ImportBatch(candidates=candidates, raw_text=raw_text, document=document)


class ImportSession:
    """One document import into one listing table.

    Args:
        extractor: Reads the uploaded document.
        merge: Writes committed candidates to the table.
        table_id: Target listing table.
        ocr_fallback: When structured extraction finds no listings, also run
            plain OCR so the user can copy the text into blank records.
    """

    def __init__(
        self,
        extractor: DocumentExtractor,
        merge: TableMerge,
        table_id: uuid.UUID,
        ocr_fallback: bool = True,
    ):
        self.extractor = extractor
        self.merge = merge
        self.table_id = table_id
        self.ocr_fallback = ocr_fallback

        self.state = SessionState.IDLE
        self.store = StagingStore()
        self.batch: ImportBatch | None = None
        self.committed: list[PropertyRecord] = []
        # Bumped on cancel so an in-flight extraction knows it is stale
        self._generation = 0

    def _require(self, action: str, *allowed: SessionState) -> None:
        if self.state not in allowed:
            raise InvalidSessionState(f"cannot {action} while {self.state.value}")

    def _reset(self) -> None:
        self.state = SessionState.IDLE
        self.store.clear()
        self.batch = None

    def open(self) -> None:
        """Start waiting for a document."""
        self._require("open", SessionState.IDLE)
        self.state = SessionState.AWAITING_DOCUMENT

    async def extract(self, document_data_uri: str, filename: str | None = None) -> ImportBatch | None:
        """Extract candidates from the document and stage them.

        A second upload while STAGED replaces the staged batch. Returns None
        when the session was cancelled before the extraction finished; the
        late result is dropped.

        Raises:
            InvalidInput, ExtractionError: the session is back to IDLE.
        """
        self._require("extract", SessionState.AWAITING_DOCUMENT, SessionState.STAGED)
        generation = self._generation
        self.state = SessionState.EXTRACTING

        try:
            batch = await extract_batch(self.extractor, document_data_uri, filename, self.ocr_fallback)
        except ListingDeskError:
            if generation == self._generation:
                self._reset()
            raise

        if generation != self._generation:
            logger.info("Discarding extraction result of a cancelled import")
            return None

        self.batch = batch
        self.store.stage(batch.candidates)
        self.state = SessionState.STAGED
        logger.info(
            f"Staged {len(batch.candidates)} candidates from {batch.document.filename or batch.document.mime_type} "
            f"({len(self.store.blocking_errors())} need review)"
        )
        return self.batch

    def commit(self) -> list[PropertyRecord]:
        """Save the committable candidates to the table in one append.

        Candidates with field errors are not written; they stay staged for
        editing and the session stays STAGED. Once nothing is left the
        session closes.

        Raises:
            ValidationError: no candidate is committable. Still STAGED.
            PersistenceError: the write failed. Still STAGED, batch kept.
        """
        self._require("commit", SessionState.STAGED)
        blocked = self.store.blocking_errors()
        if blocked and len(blocked) == len(self.store):
            raise ValidationError(blocked)

        ready = [c for index, c in enumerate(self.store.candidates) if index not in blocked]
        records = self.merge.commit(self.table_id, ready)
        self.committed = records
        if blocked:
            self.store.stage(c for index, c in enumerate(self.store.candidates) if index in blocked)
            logger.info(f"Committed {len(records)} candidates, {len(blocked)} left for review")
            return records

        self.state = SessionState.COMMITTED
        self._reset()
        return records

    def cancel(self) -> None:
        """Drop everything staged and return to IDLE."""
        self._generation += 1
        self._reset()
