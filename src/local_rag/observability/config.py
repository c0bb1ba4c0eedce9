"""
Tracing Configuration

Loads observability settings from environment variables.
Tracing is off by default and degrades to no-ops when OpenTelemetry
is not installed.
"""

import os
from dataclasses import dataclass

from local_rag.config import _env_bool


@dataclass
class TracingConfig:
    """Configuration for engine tracing.

    Environment Variables:
        RAG_TRACING_ENABLED: Enable tracing (default: false)
        RAG_TRACING_PROJECT: Project name in Phoenix UI (default: local-rag)
        RAG_TRACING_ENDPOINT: OTLP collector endpoint (optional, local Phoenix if empty)
        RAG_TRACING_CAPTURE_CONTENT: Attach query text to spans (default: false)

    PRIVACY WARNING:
        Setting RAG_TRACING_CAPTURE_CONTENT=true exports raw user queries to
        the collector. Ingested documents are never attached to spans.
    """

    enabled: bool = False
    project_name: str = "local-rag"
    collector_endpoint: str | None = None
    capture_content: bool = False

    @classmethod
    def from_env(cls) -> "TracingConfig":
        """Load config from environment variables."""
        return cls(
            enabled=_env_bool("RAG_TRACING_ENABLED"),
            project_name=os.environ.get("RAG_TRACING_PROJECT", "local-rag"),
            collector_endpoint=os.environ.get("RAG_TRACING_ENDPOINT") or None,
            capture_content=_env_bool("RAG_TRACING_CAPTURE_CONTENT"),
        )


# Global config singleton
_config: TracingConfig | None = None


def get_tracing_config() -> TracingConfig:
    """Get the global tracing config (lazy-loaded from env)."""
    global _config
    if _config is None:
        _config = TracingConfig.from_env()
    return _config


def reset_tracing_config() -> None:
    """Reset config (useful for testing)."""
    global _config
    _config = None
