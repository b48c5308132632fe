"""FastAPI application for the listing desk.

Endpoints back the UI's event handlers: document import (OCR and
structured extraction), commit of reviewed candidates, table and listing
CRUD, backups, exports and share links.
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, Literal

import logfire
from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.requests import Request

from .agent import DocumentExtractor
from .database import init_db
from .errors import (
    NO_LISTINGS_FOUND_MESSAGE,
    ExtractionEmpty,
    ExtractionMalformedResponse,
    ExtractionServiceError,
    InvalidInput,
    InvalidSessionState,
    LastTableError,
    ListingDeskError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .exports import (
    CSV_FILENAME,
    JSON_FILENAME,
    WORD_FILENAME,
    parse_backup,
    to_csv,
    to_json,
    to_word_html,
)
from .merge import TableMerge
from .queries import TableFacets, facets, filter_by_tags, sort_records
from .repository import ListingRepository, SqlListingRepository
from .schemas import (
    CandidateRecord,
    ListingInput,
    ListingTableDetail,
    ListingTableSummary,
    PropertyRecord,
    SharedListResponse,
)
from .staging import StagingStore, extract_batch

load_dotenv()

logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:9002").split(",")
    if origin.strip()
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield


app = FastAPI(
    title="Listing Desk API",
    description="Listing tables for a real-estate team, with AI import of listing documents",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure Logfire for observability (after app creation)
if os.getenv("LOGFIRE_TOKEN"):
    logfire.configure()
    logfire.instrument_fastapi(app)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Dependencies
# =============================================================================


def get_repository() -> ListingRepository:
    return SqlListingRepository()


def get_extractor() -> DocumentExtractor:
    return DocumentExtractor()


def get_merge(repository: ListingRepository = Depends(get_repository)) -> TableMerge:
    return TableMerge(repository)


# =============================================================================
# Errors
# =============================================================================

# Most specific class first
STATUS_CODES: list[tuple[type[ListingDeskError], int]] = [
    (InvalidInput, 400),
    (ExtractionEmpty, 422),
    (ExtractionMalformedResponse, 502),
    (ExtractionServiceError, 503),
    (ValidationError, 422),
    (NotFoundError, 404),
    (LastTableError, 409),
    (InvalidSessionState, 409),
    (PersistenceError, 500),
]


def status_code_for(exc: ListingDeskError) -> int:
    for error_class, status_code in STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 500


@app.exception_handler(ListingDeskError)
async def listing_desk_error_handler(request: Request, exc: ListingDeskError):
    """Send the localized message and kind; technical detail stays in the log."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc}")

    content: dict[str, Any] = {"kind": exc.kind, "message": exc.user_message}
    if isinstance(exc, ValidationError):
        content["errors"] = {str(index): fields for index, fields in exc.errors.items()}
    return JSONResponse(status_code=status_code, content=content)


# =============================================================================
# Request / response models
# =============================================================================


class DocumentRequest(BaseModel):
    document_data_uri: str = Field(description="data:<mime>;base64,<payload>")
    filename: str | None = None


class TextResponse(BaseModel):
    text: str


class ExtractResponse(BaseModel):
    properties: list[CandidateRecord]
    field_errors: dict[int, dict[str, str]] = Field(default_factory=dict)
    committable: list[bool] = Field(default_factory=list)
    raw_text: str | None = None
    empty: bool = False
    message: str | None = None


class CreateTableRequest(BaseModel):
    owner_id: str
    name: str


class RenameTableRequest(BaseModel):
    name: str


class CommitRequest(BaseModel):
    candidates: list[CandidateRecord]


class ShareRequest(BaseModel):
    table_id: uuid.UUID
    tags: list[str] = Field(default_factory=list, description="Share only records carrying all these tags.")


class ShareCreatedResponse(BaseModel):
    share_id: str


class TableViewResponse(ListingTableDetail):
    facets: TableFacets


# =============================================================================
# Endpoints
# =============================================================================


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Listing Desk API"}


@app.post("/api/import/text", response_model=TextResponse)
async def import_text(request: DocumentRequest, extractor: DocumentExtractor = Depends(get_extractor)):
    """OCR a document and return its text verbatim."""
    text = await extractor.extract_text(request.document_data_uri)
    return TextResponse(text=text)


@app.post("/api/import/extract", response_model=ExtractResponse)
async def import_extract(request: DocumentRequest, extractor: DocumentExtractor = Depends(get_extractor)):
    """Extract candidate listings for review; nothing is saved yet."""
    batch = await extract_batch(extractor, request.document_data_uri, request.filename)
    store = StagingStore()
    store.stage(batch.candidates)
    errors = store.blocking_errors()
    return ExtractResponse(
        properties=batch.candidates,
        field_errors=errors,
        committable=[index not in errors for index in range(len(batch.candidates))],
        raw_text=batch.raw_text,
        empty=batch.is_empty,
        message=NO_LISTINGS_FOUND_MESSAGE if batch.is_empty else None,
    )


@app.get("/api/tables", response_model=list[ListingTableSummary])
async def list_tables(owner_id: str, repository: ListingRepository = Depends(get_repository)):
    return repository.list_tables(owner_id)


@app.post("/api/tables", response_model=ListingTableSummary, status_code=201)
async def create_table(request: CreateTableRequest, repository: ListingRepository = Depends(get_repository)):
    return repository.create_table(request.owner_id, request.name)


@app.get("/api/tables/{table_id}", response_model=TableViewResponse)
async def get_table(
    table_id: uuid.UUID,
    tags: list[str] = Query(default=[]),
    sort: str | None = None,
    descending: bool = False,
    repository: ListingRepository = Depends(get_repository),
):
    """A table with its records filtered by tags and sorted.

    Facets are computed on the whole table so filter chips do not vanish
    while filtering.
    """
    table = repository.get_table(table_id)
    records = sort_records(filter_by_tags(table.records, tags), sort, descending)
    return TableViewResponse(
        **table.model_dump(exclude={"records"}),
        records=records,
        facets=facets(table.records),
    )


@app.patch("/api/tables/{table_id}", response_model=ListingTableSummary)
async def rename_table(
    table_id: uuid.UUID,
    request: RenameTableRequest,
    repository: ListingRepository = Depends(get_repository),
):
    return repository.rename_table(table_id, request.name)


@app.delete("/api/tables/{table_id}", status_code=204)
async def delete_table(table_id: uuid.UUID, repository: ListingRepository = Depends(get_repository)):
    repository.delete_table(table_id)
    return Response(status_code=204)


@app.post("/api/tables/{table_id}/listings", response_model=PropertyRecord, status_code=201)
async def add_listing(table_id: uuid.UUID, listing: ListingInput, merge: TableMerge = Depends(get_merge)):
    return merge.add(table_id, listing)


@app.put("/api/tables/{table_id}/listings/{listing_id}", response_model=PropertyRecord)
async def replace_listing(
    table_id: uuid.UUID,
    listing_id: str,
    listing: ListingInput,
    repository: ListingRepository = Depends(get_repository),
):
    return repository.replace_listing(table_id, listing_id, listing)


@app.delete("/api/tables/{table_id}/listings/{listing_id}", status_code=204)
async def delete_listing(
    table_id: uuid.UUID,
    listing_id: str,
    repository: ListingRepository = Depends(get_repository),
):
    repository.delete_listing(table_id, listing_id)
    return Response(status_code=204)


@app.post("/api/tables/{table_id}/commit", response_model=list[PropertyRecord], status_code=201)
async def commit_candidates(table_id: uuid.UUID, request: CommitRequest, merge: TableMerge = Depends(get_merge)):
    """Save reviewed candidates at the top of the table, all or nothing."""
    return merge.commit(table_id, request.candidates)


@app.post("/api/tables/{table_id}/backup", response_model=ListingTableDetail)
async def restore_backup(
    table_id: uuid.UUID,
    payload: Any = Body(...),
    repository: ListingRepository = Depends(get_repository),
):
    """Merge a JSON backup into the table; listings already present win."""
    return repository.restore_backup(table_id, parse_backup(payload))


EXPORTS = {
    "csv": (to_csv, "text/csv; charset=utf-8", CSV_FILENAME),
    "doc": (to_word_html, "application/msword; charset=utf-8", WORD_FILENAME),
    "json": (to_json, "application/json", JSON_FILENAME),
}


@app.get("/api/tables/{table_id}/export/{export_format}")
async def export_table(
    table_id: uuid.UUID,
    export_format: Literal["csv", "doc", "json"],
    repository: ListingRepository = Depends(get_repository),
):
    render, media_type, filename = EXPORTS[export_format]
    table = repository.get_table(table_id)
    return Response(
        content=render(table.records),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/shares", response_model=ShareCreatedResponse, status_code=201)
async def create_share(request: ShareRequest, repository: ListingRepository = Depends(get_repository)):
    """Publish a read-only snapshot of a table (optionally filtered)."""
    table = repository.get_table(request.table_id)
    share_id = repository.create_share(filter_by_tags(table.records, request.tags))
    return ShareCreatedResponse(share_id=share_id)


@app.get("/api/shares/{share_id}", response_model=SharedListResponse)
async def get_share(share_id: str, repository: ListingRepository = Depends(get_repository)):
    return repository.get_share(share_id)
