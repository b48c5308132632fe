"""Table exports (CSV, Word, JSON backup) and backup parsing.

CSV and Word files open directly in Excel / Word with pt-BR headers; both
start with a UTF-8 byte order mark so accents survive on Windows.
"""

import csv
import html
import io
import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import InvalidInput
from .schemas import (
    CandidateRecord,
    PropertyCategory,
    PropertyRecord,
    PropertyStatus,
    PropertyType,
    collect_field_errors,
    new_listing_ids,
)

BOM = "\ufeff"

CSV_FILENAME = "tabela_exclusividades.csv"
WORD_FILENAME = "tabela_exclusividades.doc"
JSON_FILENAME = "exclusividades_backup.json"

PROPERTY_TYPE_LABELS = {
    PropertyType.HOUSE: "Casa",
    PropertyType.APARTMENT: "Apartamento",
    PropertyType.LOT: "Lote",
    PropertyType.OTHER: "Outro",
}

STATUS_LABELS = {
    PropertyStatus.AVAILABLE: "Disponível",
    PropertyStatus.NEW_THIS_WEEK: "Novo na Semana",
    PropertyStatus.CHANGED: "Alterado",
    PropertyStatus.SOLD_THIS_WEEK: "Vendido na Semana",
    PropertyStatus.SOLD_THIS_MONTH: "Vendido no Mês",
}

# Short codes the team writes on the printed tables
CATEGORY_LABELS = {
    PropertyCategory.FRONT: "FR",
    PropertyCategory.SIDE: "L",
    PropertyCategory.REAR: "FU",
    PropertyCategory.FURNISHED: "M",
    PropertyCategory.STAGED: "MD",
    PropertyCategory.SEA_VIEW: "VM",
}

HEADERS = [
    "Corretor",
    "Imobiliária",
    "Empreendimento",
    "Número",
    "Tipo",
    "Categorias",
    "Status",
    "Quartos",
    "Banheiros",
    "Suítes",
    "Lavabos",
    "Área Privativa (m²)",
    "Área Total (m²)",
    "Preço",
    "Condições de Pagamento",
    "Características Adicionais",
    "Tags",
    "Endereço",
    "Bairro",
    "Contato do Corretor",
    "Link de Fotos",
    "Link Material Extra",
]


def format_number(value: float | int | None) -> str:
    """Plain number without a trailing ``.0`` for whole values."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_brl(value: float | None) -> str:
    """Format a price the pt-BR way, e.g. ``R$ 1.250.000,00``."""
    if value is None:
        return ""
    us_style = f"{value:,.2f}"
    return "R$ " + us_style.replace(",", "_").replace(".", ",").replace("_", ".")


def _row(record: PropertyRecord, price: str) -> list[str]:
    return [
        record.broker_name,
        record.agency_name or "",
        record.property_name,
        record.unit_number,
        PROPERTY_TYPE_LABELS[record.property_type],
        ", ".join(CATEGORY_LABELS[category] for category in record.categories),
        STATUS_LABELS[record.status],
        str(record.bedrooms),
        str(record.bathrooms),
        str(record.suites),
        str(record.lavabos),
        format_number(record.area_sqm),
        format_number(record.total_area_sqm),
        price,
        record.payment_terms,
        record.additional_features,
        ", ".join(record.tags),
        record.address or "",
        record.neighborhood or "",
        record.broker_contact or "",
        record.photo_link or "",
        record.extra_material_link or "",
    ]


def to_csv(records: Sequence[PropertyRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(HEADERS)
    for record in records:
        writer.writerow(_row(record, format_number(record.price)))
    return BOM + buffer.getvalue()


def to_word_html(records: Sequence[PropertyRecord], title: str = "Tabela de Exclusividades") -> str:
    """HTML table that Word opens as a document. Every value is escaped."""
    cell = '<td style="padding: 8px;">{}</td>'
    head = "".join(f'<th style="padding: 8px;">{html.escape(header)}</th>' for header in HEADERS)
    body = "\n".join(
        "<tr>" + "".join(cell.format(html.escape(value)) for value in _row(record, format_brl(record.price))) + "</tr>"
        for record in records
    )
    escaped_title = html.escape(title)
    return (
        BOM
        + "<html xmlns:o='urn:schemas-microsoft-com:office:office' "
        "xmlns:w='urn:schemas-microsoft-com:office:word' xmlns='http://www.w3.org/TR/REC-html40'>\n"
        f"<head><meta charset='utf-8'><title>{escaped_title}</title></head>\n"
        f"<body>\n<h1>{escaped_title}</h1>\n"
        '<table border="1" style="border-collapse: collapse; width: 100%;">\n'
        f'<thead><tr style="background-color: #f2f2f2;">{head}</tr></thead>\n'
        f"<tbody>\n{body}\n</tbody>\n</table>\n</body>\n</html>\n"
    )


def to_json(records: Sequence[PropertyRecord]) -> str:
    """Backup file that parse_backup reads back."""
    return json.dumps([record.model_dump(mode="json") for record in records], indent=2, ensure_ascii=False)


_TIMESTAMP = TypeAdapter(datetime | None)


def parse_backup(payload: Any) -> list[PropertyRecord]:
    """Read a JSON backup (text or already decoded) into records.

    Accepts this package's own exports and the camelCase / Portuguese-enum
    backups of the earlier app. Items without an id get a fresh one.

    Raises:
        InvalidInput: not a JSON list of listing objects, or an item fails
            field validation.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidInput(f"backup is not valid JSON: {e}") from e
    if not isinstance(payload, list):
        raise InvalidInput("backup must be a JSON list of listings")

    missing_ids = iter(new_listing_ids(len(payload)))
    records = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise InvalidInput(f"backup item {index} is not an object")
        try:
            candidate = CandidateRecord.model_validate(item)
            details = candidate.to_details()
            created_at = _TIMESTAMP.validate_python(item.get("created_at") or item.get("createdAt"))
            updated_at = _TIMESTAMP.validate_python(item.get("updated_at") or item.get("updatedAt"))
        except PydanticValidationError as e:
            raise InvalidInput(f"backup item {index} is invalid: {collect_field_errors(e)}") from e

        listing_id = str(item.get("id") or "").strip() or next(missing_ids)
        records.append(
            PropertyRecord.from_details(
                listing_id,
                details,
                user_tags=candidate.user_tags,
                created_at=created_at,
                updated_at=updated_at,
            )
        )
    return records
