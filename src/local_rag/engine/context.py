"""
Prompt context formatting.

Turns retrieval hits into a numbered block that can be pasted into a
language-model prompt:

    RELEVANT CONTEXT:
    1. <text> [Source: faq.md] [Relevance: 87%]

    2. <text> [Relevance: 71%]

No hits means NO_CONTEXT (None), never an empty string.
"""

from __future__ import annotations

from local_rag.core.protocols import RetrievedDocument

NO_CONTEXT = None
CONTEXT_HEADER = "RELEVANT CONTEXT:"


def format_hit(position: int, hit: RetrievedDocument) -> str:
    source = hit.source or hit.metadata.get("source")
    source_tag = f" [Source: {source}]" if source else ""
    relevance = f"[Relevance: {hit.similarity * 100:.0f}%]"
    return f"{position}. {hit.text}{source_tag} {relevance}"


def format_context(hits: list[RetrievedDocument]) -> str | None:
    """Render hits in rank order, or NO_CONTEXT when there are none."""
    if not hits:
        return NO_CONTEXT
    entries = [format_hit(i, hit) for i, hit in enumerate(hits, start=1)]
    return CONTEXT_HEADER + "\n" + "\n\n".join(entries)
