"""Pytest configuration and fixtures."""

import asyncio
import base64
from collections.abc import Callable
from typing import Any

import pytest
from pydantic_ai import models
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart, ToolCallPart
from pydantic_ai.models.function import AgentInfo, FunctionModel
from sqlalchemy.orm import Session, sessionmaker

from listing_desk.agent import DocumentExtractor
from listing_desk.database import init_db, make_engine
from listing_desk.repository import SqlListingRepository
from listing_desk.schemas import ListingTableSummary

# No test may reach a real model
models.ALLOW_MODEL_REQUESTS = False

# Smallest valid PNG: one transparent pixel, no text
ONE_PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class FakeExtractionService:
    """Scripted stand-in for the extraction model.

    Answers the listing agent with an output tool call carrying ``envelope``
    (or ``{"properties": properties}``) and the OCR agent with ``text``.
    """

    def __init__(
        self,
        properties: list[Any] | None = None,
        text: str = "",
        error: Exception | None = None,
        envelope: Any = None,
        delay: float = 0.0,
    ):
        self.properties = properties or []
        self.text = text
        self.error = error
        self.envelope = envelope
        self.delay = delay
        self.calls: list[str] = []
        self.requests: list[list[ModelMessage]] = []
        # Set when a call starts; a call waits for ``release`` when one is given
        self.entered = asyncio.Event()
        self.release: asyncio.Event | None = None

    async def respond(self, messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        self.requests.append(messages)
        self.calls.append("records" if info.output_tools else "ocr")
        self.entered.set()
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        if info.output_tools:
            payload = self.envelope if self.envelope is not None else {"properties": self.properties}
            return ModelResponse(parts=[ToolCallPart(info.output_tools[0].name, payload)])
        return ModelResponse(parts=[TextPart(self.text)])

    @property
    def model(self) -> FunctionModel:
        return FunctionModel(self.respond)


@pytest.fixture
def make_service() -> Callable[..., FakeExtractionService]:
    return FakeExtractionService


@pytest.fixture
def make_extractor() -> Callable[[FakeExtractionService], DocumentExtractor]:
    def make(service: FakeExtractionService, timeout: float = 5.0) -> DocumentExtractor:
        return DocumentExtractor(model=service.model, timeout=timeout)

    return make


@pytest.fixture
def listing_data() -> Callable[..., dict[str, Any]]:
    """Factory for a complete, valid listing payload."""

    def make(**overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "broker_name": "Ana Souza",
            "agency_name": "Maré Imóveis",
            "property_name": "Edifício Atlântico",
            "unit_number": "1201",
            "bedrooms": 3,
            "bathrooms": 2,
            "suites": 1,
            "lavabos": 1,
            "area_sqm": 120.5,
            "total_area_sqm": 180,
            "price": 750000,
            "payment_terms": "À vista ou financiamento",
            "additional_features": "Duas vagas de garagem",
            "property_type": "APARTMENT",
            "status": "AVAILABLE",
            "categories": ["FRONT", "SEA_VIEW"],
            "address": "Av. Atlântica, 1500",
            "neighborhood": "Meia Praia",
            "broker_contact": "(47) 99999-0000",
            "photo_link": "https://drive.google.com/drive/folders/abc",
        }
        data.update(overrides)
        return data

    return make


@pytest.fixture
def one_pixel_png() -> bytes:
    return ONE_PIXEL_PNG


@pytest.fixture
def data_uri() -> Callable[..., str]:
    def make(data: bytes = b"%PDF-1.4 listing table", mime_type: str = "application/pdf") -> str:
        return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

    return make


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker[Session]:
    """Fresh SQLite database file per test."""
    engine = make_engine(f"sqlite:///{tmp_path / 'listings.db'}")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory) -> SqlListingRepository:
    return SqlListingRepository(session_factory)


@pytest.fixture
def table(repository) -> ListingTableSummary:
    return repository.create_table("owner-1", "Exclusividades Meia Praia")
