"""
Engine module - the public entry point.

    from local_rag.engine import create_engine

    async with create_engine() as engine:
        await engine.add_document({"text": "..."})
        context = await engine.generate_context("question")
"""

from local_rag.engine.context import CONTEXT_HEADER, NO_CONTEXT, format_context
from local_rag.engine.factory import create_engine
from local_rag.engine.locks import ReadWriteLock
from local_rag.engine.rag_engine import RAGEngine, new_chunk_id
from local_rag.engine.stats import EngineStats

__all__ = [
    "CONTEXT_HEADER",
    "NO_CONTEXT",
    "format_context",
    "create_engine",
    "ReadWriteLock",
    "RAGEngine",
    "new_chunk_id",
    "EngineStats",
]
