"""Persistence of listing tables.

ListingRepository is the interface the rest of the package talks to;
SqlListingRepository implements it on SQLAlchemy sessions. Every public
method runs in one transaction: it commits on success and rolls back on any
failure. Database errors surface as PersistenceError, missing rows as
NotFoundError.
"""

import logging
import secrets
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import SessionLocal
from .errors import InvalidInput, LastTableError, ListingDeskError, NotFoundError, PersistenceError
from .models import Listing, ListingTable, SharedList
from .schemas import (
    ListingInput,
    ListingTableDetail,
    ListingTableSummary,
    PropertyRecord,
    SharedListResponse,
    derive_tags,
)

logger = logging.getLogger(__name__)

RECORD_COLUMNS = tuple(PropertyRecord.model_fields)


class ListingRepository(Protocol):
    """Storage for listing tables and shared lists."""

    def create_table(self, owner_id: str, name: str) -> ListingTableSummary: ...

    def get_table(self, table_id: uuid.UUID) -> ListingTableDetail: ...

    def list_tables(self, owner_id: str) -> list[ListingTableSummary]: ...

    def rename_table(self, table_id: uuid.UUID, name: str) -> ListingTableSummary: ...

    def delete_table(self, table_id: uuid.UUID) -> None: ...

    def append(self, table_id: uuid.UUID, records: Sequence[PropertyRecord]) -> None: ...

    def add_listing(self, table_id: uuid.UUID, record: PropertyRecord) -> PropertyRecord: ...

    def replace_listing(
        self, table_id: uuid.UUID, listing_id: str, listing: ListingInput
    ) -> PropertyRecord: ...

    def delete_listing(self, table_id: uuid.UUID, listing_id: str) -> None: ...

    def restore_backup(
        self, table_id: uuid.UUID, records: Sequence[PropertyRecord]
    ) -> ListingTableDetail: ...

    def create_share(self, records: Sequence[PropertyRecord]) -> str: ...

    def get_share(self, share_id: str) -> SharedListResponse: ...


# =============================================================================
# Row <-> record mapping
# =============================================================================


def record_from_row(row: Listing) -> PropertyRecord:
    return PropertyRecord.model_validate({column: getattr(row, column) for column in RECORD_COLUMNS})


def row_values(record: PropertyRecord) -> dict[str, Any]:
    """Column values for a record, enums stored by value."""
    return record.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInput("table name must not be empty")
    return cleaned


class SqlListingRepository:
    """ListingRepository backed by a SQL database.

    Args:
        session_factory: Callable returning a new Session. Defaults to the
            application's SessionLocal.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except ListingDeskError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"Listing store write failed: {e}")
            raise PersistenceError(f"database error: {e}") from e
        finally:
            db.close()

    def _load_table(self, db: Session, table_id: uuid.UUID) -> ListingTable:
        table = db.get(ListingTable, table_id)
        if table is None:
            raise NotFoundError(f"listing table {table_id} not found")
        return table

    def _load_listing(self, db: Session, table_id: uuid.UUID, listing_id: str) -> Listing:
        row = db.get(Listing, listing_id)
        if row is None or row.table_id != table_id:
            raise NotFoundError(f"listing {listing_id} not found in table {table_id}")
        return row

    def _lock_table(self, db: Session, table_id: uuid.UUID) -> None:
        """Bump the table version. The UPDATE holds the row until commit."""
        result = db.execute(
            update(ListingTable)
            .where(ListingTable.id == table_id)
            .values(version=ListingTable.version + 1, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount == 0:
            raise NotFoundError(f"listing table {table_id} not found")

    def _prepend(self, db: Session, table_id: uuid.UUID, records: Sequence[PropertyRecord]) -> None:
        """Insert records ahead of the current head, keeping their order."""
        head = db.scalar(select(func.min(Listing.position)).where(Listing.table_id == table_id))
        start = (head if head is not None else 0) - len(records)
        now = datetime.now(timezone.utc)
        for offset, record in enumerate(records):
            db.add(
                Listing(
                    id=record.id,
                    table_id=table_id,
                    position=start + offset,
                    created_at=record.created_at or now,
                    updated_at=record.updated_at or record.created_at or now,
                    **row_values(record),
                )
            )

    def _summary(self, db: Session, table: ListingTable) -> ListingTableSummary:
        count = db.scalar(select(func.count()).select_from(Listing).where(Listing.table_id == table.id))
        return ListingTableSummary(
            id=table.id,
            owner_id=table.owner_id,
            name=table.name,
            listing_count=count or 0,
            created_at=table.created_at,
            updated_at=table.updated_at,
        )

    def _detail(self, db: Session, table: ListingTable) -> ListingTableDetail:
        rows = db.scalars(
            select(Listing).where(Listing.table_id == table.id).order_by(Listing.position)
        ).all()
        return ListingTableDetail(
            **self._summary(db, table).model_dump(exclude={"listing_count"}),
            listing_count=len(rows),
            records=[record_from_row(row) for row in rows],
        )

    # =========================================================================
    # Tables
    # =========================================================================

    def create_table(self, owner_id: str, name: str) -> ListingTableSummary:
        table = ListingTable(owner_id=owner_id, name=_clean_name(name))
        with self._transaction() as db:
            db.add(table)
            db.flush()
            summary = self._summary(db, table)
        logger.info(f"Created listing table {summary.id} for {owner_id}")
        return summary

    def get_table(self, table_id: uuid.UUID) -> ListingTableDetail:
        with self._transaction() as db:
            return self._detail(db, self._load_table(db, table_id))

    def list_tables(self, owner_id: str) -> list[ListingTableSummary]:
        with self._transaction() as db:
            tables = db.scalars(
                select(ListingTable)
                .where(ListingTable.owner_id == owner_id)
                .order_by(ListingTable.created_at, ListingTable.name)
            ).all()
            return [self._summary(db, table) for table in tables]

    def rename_table(self, table_id: uuid.UUID, name: str) -> ListingTableSummary:
        cleaned = _clean_name(name)
        with self._transaction() as db:
            table = self._load_table(db, table_id)
            table.name = cleaned
            table.updated_at = datetime.now(timezone.utc)
            db.flush()
            return self._summary(db, table)

    def delete_table(self, table_id: uuid.UUID) -> None:
        with self._transaction() as db:
            table = self._load_table(db, table_id)
            owned = db.scalar(
                select(func.count()).select_from(ListingTable).where(ListingTable.owner_id == table.owner_id)
            )
            if owned <= 1:
                raise LastTableError(f"table {table_id} is the only table of {table.owner_id}")
            db.delete(table)
        logger.info(f"Deleted listing table {table_id}")

    # =========================================================================
    # Listings
    # =========================================================================

    def append(self, table_id: uuid.UUID, records: Sequence[PropertyRecord]) -> None:
        """Prepend records to a table in one transaction.

        The table row is locked first, so concurrent appends serialize and
        each one sees the head left by the previous one.
        """
        if not records:
            return
        with self._transaction() as db:
            self._lock_table(db, table_id)
            self._prepend(db, table_id, records)
        logger.info(f"Appended {len(records)} listings to table {table_id}")

    def add_listing(self, table_id: uuid.UUID, record: PropertyRecord) -> PropertyRecord:
        self.append(table_id, [record])
        return record

    def replace_listing(self, table_id: uuid.UUID, listing_id: str, listing: ListingInput) -> PropertyRecord:
        """Overwrite every field except the id and creation time.

        Clients often send back the ``tags`` they read, so tags derived from
        the previous field values are dropped before the index is rebuilt.
        """
        with self._transaction() as db:
            self._lock_table(db, table_id)
            row = self._load_listing(db, table_id, listing_id)
            stale = set(derive_tags(record_from_row(row).details()))
            record = PropertyRecord.from_details(
                listing_id,
                listing,
                user_tags=[tag for tag in listing.user_tags if tag not in stale],
                created_at=row.created_at,
                updated_at=datetime.now(timezone.utc),
            )
            for column, value in row_values(record).items():
                setattr(row, column, value)
            row.updated_at = record.updated_at
        return record

    def delete_listing(self, table_id: uuid.UUID, listing_id: str) -> None:
        with self._transaction() as db:
            self._lock_table(db, table_id)
            db.delete(self._load_listing(db, table_id, listing_id))
        logger.info(f"Deleted listing {listing_id} from table {table_id}")

    def restore_backup(self, table_id: uuid.UUID, records: Sequence[PropertyRecord]) -> ListingTableDetail:
        """Merge a backup into a table by id.

        Records already in the table are kept as they are. Backup-only records
        are prepended in backup order; one whose id belongs to another table
        gets a fresh id.
        """
        with self._transaction() as db:
            self._lock_table(db, table_id)
            existing = set(db.scalars(select(Listing.id).where(Listing.table_id == table_id)))
            seen: set[str] = set()
            restored: list[PropertyRecord] = []
            for record in records:
                if record.id in existing or record.id in seen:
                    continue
                seen.add(record.id)
                if db.get(Listing, record.id) is not None:
                    record = record.model_copy(update={"id": f"{record.id}-{secrets.token_hex(3)}"})
                restored.append(record)
            self._prepend(db, table_id, restored)
            db.flush()
            detail = self._detail(db, self._load_table(db, table_id))
        logger.info(
            f"Restored {len(restored)} of {len(records)} backup listings into table {table_id} "
            f"({len(records) - len(restored)} already present)"
        )
        return detail

    # =========================================================================
    # Shared lists
    # =========================================================================

    def create_share(self, records: Sequence[PropertyRecord]) -> str:
        share_id = secrets.token_urlsafe(12)
        with self._transaction() as db:
            db.add(SharedList(id=share_id, records=[record.model_dump(mode="json") for record in records]))
        logger.info(f"Published shared list {share_id} with {len(records)} listings")
        return share_id

    def get_share(self, share_id: str) -> SharedListResponse:
        with self._transaction() as db:
            shared = db.get(SharedList, share_id)
            if shared is None:
                raise NotFoundError(f"shared list {share_id} not found")
            return SharedListResponse(
                share_id=shared.id,
                records=[PropertyRecord.model_validate(item) for item in shared.records],
                created_at=shared.created_at,
            )
