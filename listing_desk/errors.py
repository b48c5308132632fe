"""Error taxonomy for the listing desk.

Every error carries a machine-readable ``kind`` and a pt-BR ``user_message``
that is safe to show to the team. ``str(error)`` keeps the technical detail
for logs and is never sent to the browser.
"""


class ListingDeskError(Exception):
    """Base exception for all listing desk errors."""

    kind = "error"
    user_message = "Ocorreu um erro inesperado. Tente novamente."

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.user_message)


class InvalidInput(ListingDeskError):
    """Raised when a request is malformed (bad data URI, unknown field, bad backup)."""

    kind = "invalid_input"
    user_message = "O arquivo enviado não é válido. Selecione um documento DOCX, PDF ou imagem."


class ExtractionError(ListingDeskError):
    """Base class for failures of the document extraction step."""

    kind = "extraction_error"


class ExtractionEmpty(ExtractionError):
    """Raised when the model ran but produced no usable text."""

    kind = "extraction_empty"
    user_message = (
        "Nenhum texto pôde ser extraído do documento. "
        "Verifique se o arquivo está legível e tente novamente."
    )


class ExtractionMalformedResponse(ExtractionError):
    """Raised when the model answer does not fit the listing envelope."""

    kind = "extraction_malformed"
    user_message = "A análise do documento retornou um resultado inesperado. Tente novamente."


class ExtractionServiceError(ExtractionError):
    """Raised when calling the model fails (network, quota, auth, timeout).

    The upstream exception is kept on ``upstream`` for logging only.
    """

    kind = "extraction_service"
    user_message = "Falha ao extrair texto do documento. Verifique o arquivo e tente novamente."

    def __init__(self, detail: str | None = None, upstream: BaseException | None = None):
        super().__init__(detail)
        self.upstream = upstream


class ValidationError(ListingDeskError):
    """Raised when staged candidates fail field checks at commit time.

    ``errors`` maps candidate index -> field name -> localized message.
    """

    kind = "validation"
    user_message = "Alguns imóveis possuem campos inválidos. Corrija os campos destacados."

    def __init__(self, errors: dict[int, dict[str, str]], detail: str | None = None):
        super().__init__(detail or f"{len(errors)} candidate(s) failed validation: {sorted(errors)}")
        self.errors = errors


class PersistenceError(ListingDeskError):
    """Raised when the listing store rejects or fails a write."""

    kind = "persistence"
    user_message = "Falha ao salvar as alterações. Tente novamente."


class NotFoundError(ListingDeskError):
    """Raised when a table, listing or shared list does not exist."""

    kind = "not_found"
    user_message = "Registro não encontrado."


class LastTableError(ListingDeskError):
    """Raised when deleting the only table an owner has."""

    kind = "last_table"
    user_message = "Não é possível excluir a única tabela da conta."


class InvalidSessionState(ListingDeskError):
    """Raised when an import session action is not allowed in its current state."""

    kind = "invalid_session_state"
    user_message = "A importação não está em um estado válido para esta ação."


NO_LISTINGS_FOUND_MESSAGE = "Nenhum imóvel encontrado no documento."


# Field-level messages shown next to the offending input during review
REQUIRED_FIELD_MESSAGE = "Campo obrigatório."
FIELD_MESSAGES = {
    "missing": REQUIRED_FIELD_MESSAGE,
    "string_too_short": REQUIRED_FIELD_MESSAGE,
    "greater_than": "Deve ser um número positivo.",
    "greater_than_equal": "O valor não pode ser negativo.",
    "int_parsing": "Deve ser um número inteiro.",
    "int_from_float": "Deve ser um número inteiro.",
    "int_type": "Deve ser um número inteiro.",
    "float_parsing": "Deve ser um número.",
    "float_type": "Deve ser um número.",
    "url": "URL inválida.",
}


def field_message(error_type: str, value: object = None) -> str:
    """Localized message for a pydantic error type on a single field."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return REQUIRED_FIELD_MESSAGE
    return FIELD_MESSAGES.get(error_type, "Valor inválido.")
