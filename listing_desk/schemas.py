"""Pydantic schemas for listing tables and the document import pipeline.

Schema layers:
- CandidateRecord: lenient shape returned by the extraction model and edited
  during import review. Values may be wrong while the user is still typing.
- ListingDetails: the validated field set. Every committed or hand-entered
  listing must pass it.
- PropertyRecord: ListingDetails plus identity, derived tags and timestamps.

Field descriptions double as guidance for the extraction model, so they are
written for a reader of the source document, not for a developer.
"""

import secrets
import unicodedata
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from .errors import field_message


# =============================================================================
# ENUMS
# =============================================================================


class PropertyType(str, Enum):
    """What kind of property is being sold."""

    HOUSE = "HOUSE"
    """Casa."""

    APARTMENT = "APARTMENT"
    """Apartamento, including penthouses and studios."""

    LOT = "LOT"
    """Lote / terreno without a building."""

    OTHER = "OTHER"
    """Anything else, and the fallback for unreadable values."""


class PropertyStatus(str, Enum):
    """Where the listing stands this week."""

    AVAILABLE = "AVAILABLE"
    NEW_THIS_WEEK = "NEW_THIS_WEEK"
    CHANGED = "CHANGED"
    SOLD_THIS_WEEK = "SOLD_THIS_WEEK"
    SOLD_THIS_MONTH = "SOLD_THIS_MONTH"


class PropertyCategory(str, Enum):
    """Facing and finish labels used by the team to group listings."""

    FRONT = "FRONT"
    """Frente: unit faces the street or the sea front."""

    SIDE = "SIDE"
    """Lateral."""

    REAR = "REAR"
    """Fundos."""

    FURNISHED = "FURNISHED"
    """Mobiliado."""

    STAGED = "STAGED"
    """Decorado."""

    SEA_VIEW = "SEA_VIEW"
    """Com vista para o mar."""


# =============================================================================
# Normalization maps
# The extraction model and older backups use the team's Portuguese labels.
# =============================================================================

PROPERTY_TYPE_ALIASES = {
    "CASA": PropertyType.HOUSE,
    "SOBRADO": PropertyType.HOUSE,
    "APARTAMENTO": PropertyType.APARTMENT,
    "APTO": PropertyType.APARTMENT,
    "COBERTURA": PropertyType.APARTMENT,
    "LOTE": PropertyType.LOT,
    "TERRENO": PropertyType.LOT,
    "OUTRO": PropertyType.OTHER,
}

STATUS_ALIASES = {
    "DISPONIVEL": PropertyStatus.AVAILABLE,
    "NOVO_NA_SEMANA": PropertyStatus.NEW_THIS_WEEK,
    "NOVO": PropertyStatus.NEW_THIS_WEEK,
    "ALTERADO": PropertyStatus.CHANGED,
    "VENDIDO_NA_SEMANA": PropertyStatus.SOLD_THIS_WEEK,
    "VENDIDO_NO_MES": PropertyStatus.SOLD_THIS_MONTH,
}

CATEGORY_ALIASES = {
    "FRENTE": PropertyCategory.FRONT,
    "FR": PropertyCategory.FRONT,
    "LATERAL": PropertyCategory.SIDE,
    "L": PropertyCategory.SIDE,
    "FUNDOS": PropertyCategory.REAR,
    "FU": PropertyCategory.REAR,
    "MOBILIADO": PropertyCategory.FURNISHED,
    "M": PropertyCategory.FURNISHED,
    "DECORADO": PropertyCategory.STAGED,
    "MD": PropertyCategory.STAGED,
    "COM_VISTA_PARA_O_MAR": PropertyCategory.SEA_VIEW,
    "VISTA_MAR": PropertyCategory.SEA_VIEW,
    "VM": PropertyCategory.SEA_VIEW,
}


def _enum_key(raw: Any) -> str:
    """Uppercase, accent-free, underscore-joined key for alias lookup."""
    if raw is None:
        return ""
    if isinstance(raw, Enum):
        raw = raw.value
    text = unicodedata.normalize("NFKD", str(raw))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return "_".join(text.strip().upper().replace("-", " ").split())


def normalize_property_type(raw: Any) -> PropertyType:
    """Map any model or backup value to a PropertyType, falling back to OTHER."""
    key = _enum_key(raw)
    if key in PropertyType.__members__:
        return PropertyType[key]
    return PROPERTY_TYPE_ALIASES.get(key, PropertyType.OTHER)


def normalize_status(raw: Any) -> PropertyStatus:
    """Map any model or backup value to a PropertyStatus, falling back to AVAILABLE."""
    key = _enum_key(raw)
    if key in PropertyStatus.__members__:
        return PropertyStatus[key]
    return STATUS_ALIASES.get(key, PropertyStatus.AVAILABLE)


def normalize_categories(raw: Any) -> list[PropertyCategory]:
    """Map a list (or comma-separated string) of labels, dropping unknown ones."""
    if raw is None:
        return []
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple, set)):
        items = raw
    else:
        items = [raw]

    categories: list[PropertyCategory] = []
    for item in items:
        key = _enum_key(item)
        if key in PropertyCategory.__members__:
            category = PropertyCategory[key]
        else:
            category = CATEGORY_ALIASES.get(key)
        if category is not None and category not in categories:
            categories.append(category)
    return categories


def normalize_tag_list(raw: Any) -> list[str]:
    """Free tags from a list or a comma-separated string, trimmed, empties dropped.

    A lone number becomes a one-tag list; any other shape raises ValueError.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple, set)):
        items = raw
    elif isinstance(raw, (int, float)):
        items = [raw]
    else:
        raise ValueError("tags must be text or a list of text")
    return [str(item).strip() for item in items if item is not None and str(item).strip()]


def derive_tags(details: "ListingDetails", user_tags: Iterable[str] = ()) -> list[str]:
    """Build the filter index for a listing.

    User tags first, then neighborhood, agency, property type, status and
    every category. Empty values are skipped and duplicates removed, keeping
    first-seen order.
    """
    values = [
        *user_tags,
        details.neighborhood,
        details.agency_name,
        details.property_type.value,
        details.status.value,
        *(category.value for category in details.categories),
    ]
    tags: list[str] = []
    for value in values:
        tag = (value or "").strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


# Fields that must be filled before a listing can be saved
REQUIRED_FIELDS = (
    "broker_name",
    "property_name",
    "price",
    "area_sqm",
    "bedrooms",
    "bathrooms",
    "suites",
    "payment_terms",
)
LINK_FIELDS = ("photo_link", "extra_material_link")
NUMERIC_FIELDS = ("bedrooms", "bathrooms", "suites", "lavabos", "area_sqm", "total_area_sqm", "price")
OPTIONAL_TEXT_FIELDS = ("agency_name", "address", "neighborhood", "broker_contact", *LINK_FIELDS)

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def collect_field_errors(exc: PydanticValidationError) -> dict[str, str]:
    """Flatten a pydantic error into {field: localized message}, first error wins."""
    errors: dict[str, str] = {}
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "__root__"
        errors.setdefault(field, field_message(error["type"], error.get("input")))
    return errors


# =============================================================================
# Validated listing fields
# =============================================================================


class ListingDetails(BaseModel):
    """All user-editable fields of a listing, fully validated.

    Required: broker_name, property_name, price, area_sqm, bedrooms,
    bathrooms, suites, payment_terms. Links must be empty or http(s) URLs.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    broker_name: str = Field(min_length=1, description="Broker or agent responsible for the listing.")
    agency_name: str | None = Field(default=None, description="Real-estate agency (imobiliária).")
    property_name: str = Field(min_length=1, description="Building or development name.")
    unit_number: str = Field(default="", description="House or apartment number.")

    bedrooms: int = Field(ge=0)
    bathrooms: int = Field(ge=0)
    suites: int = Field(ge=0)
    lavabos: int = Field(default=0, ge=0)

    area_sqm: float = Field(gt=0, description="Private / livable area in square meters.")
    total_area_sqm: float | None = Field(default=None, gt=0, description="Total area in square meters.")
    price: float = Field(gt=0, description="Asking price in BRL.")
    payment_terms: str = Field(min_length=1)
    additional_features: str = ""

    property_type: PropertyType = PropertyType.OTHER
    status: PropertyStatus = PropertyStatus.AVAILABLE
    categories: list[PropertyCategory] = Field(default_factory=list)

    address: str | None = None
    neighborhood: str | None = None
    broker_contact: str | None = None
    photo_link: str | None = None
    extra_material_link: str | None = None

    @field_validator(*OPTIONAL_TEXT_FIELDS, "total_area_sqm", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("unit_number", "additional_features", mode="before")
    @classmethod
    def none_to_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator(*LINK_FIELDS)
    @classmethod
    def check_link(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            _HTTP_URL.validate_python(v)
        except PydanticValidationError:
            raise PydanticCustomError("url", "must be a valid http(s) URL") from None
        return v


class ListingInput(ListingDetails):
    """A listing entered by hand through the add / edit form."""

    user_tags: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("user_tags", "tags"),
        description="Free labels typed by the user.",
    )

    @field_validator("user_tags", mode="before")
    @classmethod
    def split_tags(cls, v: Any) -> list[str]:
        return normalize_tag_list(v)


def new_listing_ids(count: int, now: datetime | None = None) -> list[str]:
    """Identifiers for one batch: ``<UTC timestamp>-<batch token>-<sequence>``.

    The random token separates batches created in the same microsecond; the
    sequence makes ids unique within a batch.
    """
    now = now or datetime.now(timezone.utc)
    token = secrets.token_hex(3)
    return [f"{now:%Y%m%dT%H%M%S%f}Z-{token}-{seq}" for seq in range(count)]


class PropertyRecord(ListingDetails):
    """A listing saved in a table.

    ``tags`` is recomputed on every validation, so the derived part of the
    index can never drift from the record's fields.
    """

    id: str
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v: Any) -> list[str]:
        return normalize_tag_list(v)

    @model_validator(mode="after")
    def refresh_tags(self) -> "PropertyRecord":
        self.tags = derive_tags(self, self.tags)
        return self

    @classmethod
    def from_details(
        cls,
        listing_id: str,
        details: ListingDetails,
        user_tags: Iterable[str] = (),
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> "PropertyRecord":
        fields = details.model_dump(include=set(ListingDetails.model_fields))
        return cls(
            id=listing_id,
            tags=list(user_tags),
            created_at=created_at,
            updated_at=updated_at or created_at,
            **fields,
        )

    def details(self) -> ListingDetails:
        return ListingDetails.model_validate(self.model_dump(include=set(ListingDetails.model_fields)))


# =============================================================================
# Import candidates
# =============================================================================


class CandidateRecord(BaseModel):
    """A listing found in a document, awaiting review.

    Types are deliberately loose: a number the model misread stays on the
    record as text so the user can fix it, and enum values outside the known
    sets fall back to OTHER / AVAILABLE / no category instead of failing.
    Field names also accept the camelCase spelling used by older exports.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    broker_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("broker_name", "brokerName", "agentName", "agent_name"),
        description="Name of the broker, agent or company listing the property.",
    )
    agency_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("agency_name", "agencyName"),
        description="Real-estate agency (imobiliária), if different from the broker.",
    )
    property_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("property_name", "propertyName"),
        description="Name of the building, condominium or development.",
    )
    unit_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices("unit_number", "houseNumber", "unitNumber"),
        description="House or apartment number.",
    )

    bedrooms: int | float | str | None = Field(default=None, description="Number of bedrooms (quartos).")
    bathrooms: int | float | str | None = Field(default=None, description="Number of bathrooms (banheiros).")
    suites: int | float | str | None = Field(default=None, description="Number of suites (suítes).")
    lavabos: int | float | str | None = Field(
        default=None, description="Number of lavabos (toilets without shower or bath)."
    )
    area_sqm: int | float | str | None = Field(
        default=None,
        validation_alias=AliasChoices("area_sqm", "areaSize"),
        description="Private / livable area in square meters, as a plain number.",
    )
    total_area_sqm: int | float | str | None = Field(
        default=None,
        validation_alias=AliasChoices("total_area_sqm", "totalAreaSize"),
        description="Total area in square meters, as a plain number.",
    )
    price: int | float | str | None = Field(
        default=None, description="Asking price in BRL as a plain number, without currency symbol or separators."
    )
    payment_terms: str | None = Field(
        default=None,
        validation_alias=AliasChoices("payment_terms", "paymentTerms"),
        description="Payment conditions (entrada, financiamento, permuta...).",
    )
    additional_features: str | None = Field(
        default=None,
        validation_alias=AliasChoices("additional_features", "additionalFeatures"),
        description="Any other features mentioned for this property.",
    )

    property_type: PropertyType = Field(
        default=PropertyType.OTHER,
        validation_alias=AliasChoices("property_type", "propertyType"),
        description="HOUSE, APARTMENT, LOT or OTHER.",
    )
    status: PropertyStatus = Field(
        default=PropertyStatus.AVAILABLE,
        description="AVAILABLE unless the document says the unit is new, changed or sold.",
    )
    categories: list[PropertyCategory] = Field(
        default_factory=list,
        validation_alias=AliasChoices("categories", "category"),
        description="Facing / finish labels: FRONT, SIDE, REAR, FURNISHED, STAGED, SEA_VIEW.",
    )

    address: str | None = Field(default=None, description="Full street address.")
    neighborhood: str | None = Field(default=None, description="Neighborhood (bairro).")
    broker_contact: str | None = Field(
        default=None,
        validation_alias=AliasChoices("broker_contact", "brokerContact"),
        description="Phone or e-mail of the broker.",
    )
    photo_link: str | None = Field(
        default=None,
        validation_alias=AliasChoices("photo_link", "photoDriveLink", "photoLink"),
        description="URL of a photo gallery (e.g. Google Drive).",
    )
    extra_material_link: str | None = Field(
        default=None,
        validation_alias=AliasChoices("extra_material_link", "extraMaterialLink"),
        description="URL of brochures, videos or other material.",
    )

    user_tags: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("user_tags", "tags"),
        description="Free labels added during review. Leave empty when extracting.",
    )

    @field_validator(
        "broker_name",
        "agency_name",
        "property_name",
        "unit_number",
        "payment_terms",
        "additional_features",
        "address",
        "neighborhood",
        "broker_contact",
        "photo_link",
        "extra_material_link",
        mode="before",
    )
    @classmethod
    def stringify_text(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator(*NUMERIC_FIELDS, mode="before")
    @classmethod
    def loosen_number(cls, v: Any) -> Any:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return v
        text = str(v).strip()
        return text or None

    @field_validator("property_type", mode="before")
    @classmethod
    def coerce_property_type(cls, v: Any) -> PropertyType:
        return normalize_property_type(v)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> PropertyStatus:
        return normalize_status(v)

    @field_validator("categories", mode="before")
    @classmethod
    def coerce_categories(cls, v: Any) -> list[PropertyCategory]:
        return normalize_categories(v)

    @field_validator("user_tags", mode="before")
    @classmethod
    def split_tags(cls, v: Any) -> list[str]:
        return normalize_tag_list(v)

    def details_payload(self) -> dict[str, Any]:
        """Field values for ListingDetails validation."""
        return self.model_dump(exclude={"user_tags"})

    def field_errors(self) -> dict[str, str]:
        """Localized errors per field; empty when the candidate can be committed."""
        try:
            ListingDetails.model_validate(self.details_payload())
        except PydanticValidationError as exc:
            return collect_field_errors(exc)
        return {}

    def field_error(self, field: str) -> str | None:
        return self.field_errors().get(field)

    @property
    def is_committable(self) -> bool:
        return not self.field_errors()

    def to_details(self) -> ListingDetails:
        """Validated fields. Raises pydantic's ValidationError when not committable."""
        return ListingDetails.model_validate(self.details_payload())


class ExtractionEnvelope(BaseModel):
    """Structured answer expected from the listing extraction model."""

    properties: list[CandidateRecord] = Field(
        description="Every distinct property listing in the document, in document order. "
        "Empty list when the document contains no listings."
    )


# =============================================================================
# Tables and shares
# =============================================================================


class ListingTableSummary(BaseModel):
    """A listing table without its records."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: str
    name: str
    listing_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ListingTableDetail(ListingTableSummary):
    """A listing table with its records, most recently added first."""

    records: list[PropertyRecord] = Field(default_factory=list)


class SharedListResponse(BaseModel):
    """A read-only snapshot of records published through a share link."""

    share_id: str
    records: list[PropertyRecord]
    created_at: datetime | None = None
