"""
Input Schemas

These Pydantic models define the INPUT CONTRACT for the engine's public API.
Every document and every retrieval request is validated against them before
any side effect happens (no embedding call, no store write).

INTERVIEW TALKING POINT:
------------------------
"Validation is a schema, not a pile of if-statements scattered through the
ingestion path. If a caller sends a 3-character document or a negative top_k,
the request dies at the boundary with a ValidationError and nothing is written."
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from pydantic import ValidationError as PydanticValidationError

from local_rag.core.errors import ValidationError


class DocumentInput(BaseModel):
    """A document submitted for ingestion."""

    model_config = ConfigDict(extra="ignore")

    text: str = Field(
        min_length=1,
        description="Raw document text; chunked before embedding",
    )

    category: str = Field(
        default="general",
        description="Free-form label used for filtering at retrieval time",
    )

    source: str = Field(
        default="manual",
        description="Provenance tag (file name, URL, 'manual', ...)",
    )

    metadata: dict[str, JsonValue] = Field(
        default_factory=dict,
        description="JSON key/value data copied onto every chunk",
    )


class RetrieveOptions(BaseModel):
    """Options accepted by retrieve() and generate_context()."""

    model_config = ConfigDict(extra="forbid")

    top_k: int | None = Field(
        default=None,
        gt=0,
        description="Maximum number of hits (engine default when omitted)",
    )

    min_similarity: float | None = Field(
        default=None,
        ge=-1.0,
        le=1.0,
        description="Drop hits below this cosine similarity",
    )

    category: str | None = Field(
        default=None,
        description="Only return hits with this exact category",
    )

    include_metadata: bool = Field(
        default=True,
        description="Hydrate hits with full text/source/timestamp from the store",
    )


def parse_document(data: DocumentInput | dict[str, Any]) -> DocumentInput:
    """Validate raw input into a DocumentInput, raising our ValidationError."""
    if isinstance(data, DocumentInput):
        return data
    if not isinstance(data, dict):
        raise ValidationError(f"document must be a mapping, got {type(data).__name__}")
    try:
        return DocumentInput.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"invalid document: {e}") from e


def parse_retrieve_options(**options: Any) -> RetrieveOptions:
    """Validate retrieve() keyword options, raising our ValidationError."""
    try:
        return RetrieveOptions.model_validate(options)
    except PydanticValidationError as e:
        raise ValidationError(f"invalid retrieve options: {e}") from e
