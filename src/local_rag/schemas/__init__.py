"""Pydantic input contracts for the public engine API."""

from local_rag.schemas.documents import (
    DocumentInput,
    RetrieveOptions,
    parse_document,
    parse_retrieve_options,
)

__all__ = [
    "DocumentInput",
    "RetrieveOptions",
    "parse_document",
    "parse_retrieve_options",
]
