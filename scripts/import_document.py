"""Import listings from a local document into a listing table.

Runs the same pipeline as the upload dialog: structured extraction with OCR
fallback, a review printout, and an optional commit.

Usage:
    uv run python scripts/import_document.py data/exclusividades.pdf            # Preview only
    uv run python scripts/import_document.py data/tabela.docx --text            # Raw OCR text
    uv run python scripts/import_document.py data/tabela.png --commit TABLE_ID  # Save to a table
"""

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from listing_desk.agent import DocumentExtractor
from listing_desk.database import init_db
from listing_desk.documents import encode_file
from listing_desk.errors import NO_LISTINGS_FOUND_MESSAGE, ListingDeskError, ValidationError
from listing_desk.merge import TableMerge
from listing_desk.repository import SqlListingRepository
from listing_desk.staging import ImportSession


def print_batch(session: ImportSession) -> None:
    batch = session.batch
    if batch is None or batch.is_empty:
        print(NO_LISTINGS_FOUND_MESSAGE)
        if batch is not None and batch.raw_text:
            print("\n--- Texto extraído (OCR) ---")
            print(batch.raw_text)
        return

    for index, candidate in enumerate(session.store.candidates):
        errors = session.store.field_errors(index)
        marker = "OK " if not errors else "!! "
        print(f"{marker}[{index}] {candidate.property_name or '?'} {candidate.unit_number or ''}")
        print(json.dumps(candidate.model_dump(mode="json", exclude_none=True), indent=2, ensure_ascii=False))
        for field, message in errors.items():
            print(f"    {field}: {message}")


async def run(args: argparse.Namespace) -> int:
    document_data_uri = encode_file(args.path)
    extractor = DocumentExtractor(model=args.model)

    if args.text:
        print(await extractor.extract_text(document_data_uri))
        return 0

    init_db()
    table_id = args.commit or uuid.uuid4()
    session = ImportSession(extractor, TableMerge(SqlListingRepository()), table_id)
    session.open()
    await session.extract(document_data_uri, filename=args.path.name)
    print_batch(session)

    if args.commit is None:
        return 0

    try:
        records = session.commit()
    except ValidationError:
        print("\nNo listing is ready. Fix the flagged fields before committing.")
        return 1
    print(f"\n✓ Committed {len(records)} listings to table {args.commit}")
    if len(session.store):
        print(f"{len(session.store)} listings with flagged fields were not saved.")
        return 1
    return 0


def main():
    parser = argparse.ArgumentParser(description="Import listings from a document")
    parser.add_argument("path", type=Path, help="DOCX, PDF or image file")
    parser.add_argument("--text", action="store_true", help="Only print the OCR text")
    parser.add_argument("--commit", type=uuid.UUID, metavar="TABLE_ID", help="Save the listings to this table")
    parser.add_argument("--model", help="Override EXTRACTION_MODEL")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show pipeline logs")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    if not args.path.is_file():
        parser.error(f"{args.path} not found")

    try:
        sys.exit(asyncio.run(run(args)))
    except ListingDeskError as e:
        print(f"Error: {e.user_message} ({e})")
        sys.exit(1)


if __name__ == "__main__":
    main()
