"""Data URI handling for uploaded listing documents.

The browser hands us ``data:<mime>;base64,<payload>``. We check the shape,
decode the payload and pass the bytes on untouched; deciding whether a file
is readable is left to the extraction model.
"""

import base64
import binascii
import logging
import mimetypes
import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import InvalidInput

load_dotenv()

logger = logging.getLogger(__name__)

# Matches the request body ceiling of the original upload endpoint
MAX_DOCUMENT_BYTES = int(os.getenv("MAX_DOCUMENT_BYTES", str(260 * 1024 * 1024)))

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MIME_TYPE = "application/pdf"

DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[\w.+-]+=[^;,]*)*);base64,(?P<payload>.*)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class DocumentRef:
    """Identity of the uploaded file for one import session. Never persisted."""

    mime_type: str
    size_bytes: int
    filename: str | None = None


@dataclass(frozen=True)
class DecodedDocument:
    """Raw document bytes ready to hand to the model."""

    mime_type: str
    data: bytes


def is_expected_mime(mime_type: str) -> bool:
    """True for images, PDFs and DOCX files."""
    return mime_type.startswith("image/") or mime_type in (PDF_MIME_TYPE, DOCX_MIME_TYPE)


def _match(document_data_uri: str) -> re.Match[str]:
    if not isinstance(document_data_uri, str):
        raise InvalidInput("document must be a data URI string")
    match = DATA_URI_RE.match(document_data_uri.strip())
    if not match:
        raise InvalidInput("document is not a base64 data URI (data:<mime>;base64,<payload>)")
    return match


def _estimated_size(payload: str) -> int:
    return len(payload) * 3 // 4


def describe_data_uri(document_data_uri: str, filename: str | None = None) -> DocumentRef:
    """Read mime type and approximate size without decoding the payload."""
    match = _match(document_data_uri)
    return DocumentRef(
        mime_type=match.group("mime").lower(),
        size_bytes=_estimated_size(match.group("payload")),
        filename=filename,
    )


def parse_data_uri(document_data_uri: str) -> DecodedDocument:
    """Decode a data URI. Raises InvalidInput for anything that is not one."""
    match = _match(document_data_uri)
    mime_type = match.group("mime").lower()
    payload = "".join(match.group("payload").split())

    if not payload:
        raise InvalidInput("data URI has an empty payload")
    if _estimated_size(payload) > MAX_DOCUMENT_BYTES:
        raise InvalidInput(f"document exceeds {MAX_DOCUMENT_BYTES} bytes")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInput("data URI payload is not valid base64") from exc

    if not is_expected_mime(mime_type):
        logger.warning(f"Forwarding document with unexpected mime type {mime_type}")

    return DecodedDocument(mime_type=mime_type, data=data)


def encode_file(path: Path) -> str:
    """Build a data URI from a local file, as the browser's FileReader would."""
    mime_type, _ = mimetypes.guess_type(path.name)
    if path.suffix.lower() == ".docx":
        mime_type = DOCX_MIME_TYPE
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type or 'application/octet-stream'};base64,{payload}"
