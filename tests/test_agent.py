"""Tests for DocumentExtractor against a scripted extraction model."""

import pytest
from pydantic_ai import BinaryContent
from pydantic_ai.messages import UserPromptPart

from listing_desk.errors import (
    ExtractionEmpty,
    ExtractionMalformedResponse,
    ExtractionServiceError,
    InvalidInput,
)
from listing_desk.schemas import PropertyCategory, PropertyStatus, PropertyType


def sent_binary(service) -> BinaryContent:
    """The document the service received in its last request."""
    request = service.requests[-1][0]
    user_part = next(part for part in request.parts if isinstance(part, UserPromptPart))
    return next(item for item in user_part.content if isinstance(item, BinaryContent))


class TestExtractText:
    async def test_returns_stripped_text(self, make_service, make_extractor, data_uri) -> None:
        service = make_service(text="  Edifício Atlântico | 1201 | R$ 750.000,00 \n")
        text = await make_extractor(service).extract_text(data_uri())
        assert text == "Edifício Atlântico | 1201 | R$ 750.000,00"
        assert service.calls == ["ocr"]

    async def test_sends_document_bytes(self, make_service, make_extractor, data_uri) -> None:
        service = make_service(text="ok")
        await make_extractor(service).extract_text(data_uri(b"%PDF-1.4 body", "application/pdf"))
        binary = sent_binary(service)
        assert binary.data == b"%PDF-1.4 body"
        assert binary.media_type == "application/pdf"

    async def test_blank_pixel_image_is_empty(self, make_service, make_extractor, data_uri, one_pixel_png) -> None:
        service = make_service(text=" ")
        with pytest.raises(ExtractionEmpty):
            await make_extractor(service).extract_text(data_uri(one_pixel_png, "image/png"))

    async def test_malformed_uri_never_calls_the_model(self, make_service, make_extractor) -> None:
        service = make_service(text="should not be used")
        with pytest.raises(InvalidInput):
            await make_extractor(service).extract_text("not a data uri")
        assert service.calls == []

    async def test_service_failure(self, make_service, make_extractor, data_uri) -> None:
        service = make_service(error=RuntimeError("429 quota exceeded"))
        with pytest.raises(ExtractionServiceError) as exc_info:
            await make_extractor(service).extract_text(data_uri())
        assert exc_info.value.upstream is not None
        assert "quota" not in exc_info.value.user_message

    async def test_timeout(self, make_service, make_extractor, data_uri) -> None:
        service = make_service(text="late", delay=1.0)
        with pytest.raises(ExtractionServiceError):
            await make_extractor(service, timeout=0.05).extract_text(data_uri())


class TestExtractRecords:
    async def test_one_candidate_per_listing(self, make_service, make_extractor, data_uri, listing_data) -> None:
        service = make_service(
            properties=[listing_data(unit_number="101"), listing_data(unit_number="102"), listing_data(unit_number="103")]
        )
        candidates = await make_extractor(service).extract_records(data_uri())
        assert [candidate.unit_number for candidate in candidates] == ["101", "102", "103"]
        assert all(candidate.is_committable for candidate in candidates)
        assert service.calls == ["records"]

    async def test_portuguese_enums_are_normalized(self, make_service, make_extractor, data_uri, listing_data) -> None:
        service = make_service(
            properties=[
                listing_data(property_type="CASA", status="NOVO_NA_SEMANA", categories=["FR", "VM"]),
                listing_data(property_type="Mansão", status="RESERVADO", categories=["PISCINA"]),
            ]
        )
        first, second = await make_extractor(service).extract_records(data_uri())
        assert first.property_type == PropertyType.HOUSE
        assert first.status == PropertyStatus.NEW_THIS_WEEK
        assert first.categories == [PropertyCategory.FRONT, PropertyCategory.SEA_VIEW]
        assert second.property_type == PropertyType.OTHER
        assert second.status == PropertyStatus.AVAILABLE
        assert second.categories == []

    async def test_no_listings_is_an_empty_list(self, make_service, make_extractor, data_uri) -> None:
        service = make_service(envelope={"properties": []})
        assert await make_extractor(service).extract_records(data_uri()) == []

    async def test_bad_number_flags_only_that_record(
        self, make_service, make_extractor, data_uri, listing_data
    ) -> None:
        service = make_service(properties=[listing_data(), listing_data(price="not-a-number")])
        good, bad = await make_extractor(service).extract_records(data_uri())
        assert good.is_committable
        assert not bad.is_committable
        assert bad.price == "not-a-number"
        assert set(bad.field_errors()) == {"price"}

    async def test_scalar_tags_keep_every_record(
        self, make_service, make_extractor, data_uri, listing_data
    ) -> None:
        service = make_service(properties=[{**listing_data(unit_number="1"), "tags": 5}, listing_data(unit_number="2")])
        first, second = await make_extractor(service).extract_records(data_uri())
        assert first.user_tags == ["5"]
        assert first.is_committable
        assert second.unit_number == "2"

    @pytest.mark.parametrize(
        "envelope",
        [
            {"properties": "none"},
            {"properties": ["Edifício Atlântico 1201"]},
            {"listings": []},
        ],
    )
    async def test_malformed_envelope(self, make_service, make_extractor, data_uri, envelope) -> None:
        service = make_service(envelope=envelope)
        with pytest.raises(ExtractionMalformedResponse):
            await make_extractor(service).extract_records(data_uri())

    async def test_service_failure(self, make_service, make_extractor, data_uri) -> None:
        service = make_service(error=ConnectionError("network unreachable"))
        with pytest.raises(ExtractionServiceError):
            await make_extractor(service).extract_records(data_uri())
