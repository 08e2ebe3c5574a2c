"""
Configuration models for personal-brain.

Every setting has a default; ``load_config`` overlays values from
environment variables:

    PERSONAL_BRAIN_DB_PATH            - ChromaDB store path (default: ~/.cache/personal-brain)
    PERSONAL_BRAIN_COLLECTION         - ChromaDB collection for chunks (default: chunks)
    PERSONAL_BRAIN_CONVERSATIONS_PATH - directory for conversation JSON files
    PERSONAL_BRAIN_MODEL              - sentence-transformers model (default: all-MiniLM-L6-v2)
    PERSONAL_BRAIN_EMBEDDING_DIM      - embedding dimension (default: 384)
    PERSONAL_BRAIN_CHUNK_SIZE         - maximum characters per chunk (default: 1000)
    PERSONAL_BRAIN_CHUNK_OVERLAP      - characters shared by neighbouring chunks (default: 200)
    PERSONAL_BRAIN_MAX_ACTIVE_TURNS   - active tier size before summarizing (default: 10)
    PERSONAL_BRAIN_MAX_ACTIVE_TOKENS  - active tier token budget (default: 2000)
    PERSONAL_BRAIN_PROVIDER_TIMEOUT   - seconds allowed per provider call (default: 10)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

_DEFAULT_DB_PATH = str(Path.home() / ".cache" / "personal-brain")


class ChunkingConfig(BaseModel):
    """Chunk splitting parameters."""

    max_chunk_size: int = Field(default=1000, ge=1, description="Maximum characters per chunk")
    overlap: int = Field(default=200, ge=0, description="Characters shared by neighbouring chunks")

    @model_validator(mode="after")
    def _overlap_smaller_than_chunk(self) -> ChunkingConfig:
        if self.overlap >= self.max_chunk_size:
            raise ValueError(
                f"overlap ({self.overlap}) must be smaller than "
                f"max_chunk_size ({self.max_chunk_size})"
            )
        return self


class RetryConfig(BaseModel):
    """Bounded retry policy shared by embedding and summarization calls."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=0.5, ge=0.0, description="Seconds before the first retry")
    factor: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")
    max_delay: float = Field(default=8.0, ge=0.0)
    timeout: float | None = Field(default=10.0, gt=0.0, description="Seconds per provider call")


class EmbeddingConfig(BaseModel):
    model_name: str = Field(default="all-MiniLM-L6-v2")
    dimension: int = Field(default=384, ge=1)
    cache_size: int = Field(default=10_000, ge=0, description="Cached vectors (0 disables)")


class MemoryConfig(BaseModel):
    """Tiered conversation-memory thresholds."""

    max_active_turns: int = Field(default=10, ge=1)
    max_active_tokens: int = Field(default=2000, ge=1)
    min_block_size: int = Field(default=2, ge=1, description="Fewest turns per summary")
    prompt_max_tokens: int = Field(default=2000, ge=1)
    max_summaries: int | None = Field(
        default=None, ge=1, description="Newest summaries shown by get_tiered_history"
    )
    max_archived_turns: int | None = Field(
        default=None, ge=1, description="Newest archived turns shown by get_tiered_history"
    )


class StorageConfig(BaseModel):
    db_path: str = Field(default=_DEFAULT_DB_PATH)
    collection_name: str = Field(default="chunks")
    conversations_path: str = Field(default=str(Path(_DEFAULT_DB_PATH) / "conversations"))


class BrainConfig(BaseModel):
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


# (section, field, environment variable)
_ENV_VARS: list[tuple[str, str, str]] = [
    ("storage", "db_path", "PERSONAL_BRAIN_DB_PATH"),
    ("storage", "collection_name", "PERSONAL_BRAIN_COLLECTION"),
    ("storage", "conversations_path", "PERSONAL_BRAIN_CONVERSATIONS_PATH"),
    ("embedding", "model_name", "PERSONAL_BRAIN_MODEL"),
    ("embedding", "dimension", "PERSONAL_BRAIN_EMBEDDING_DIM"),
    ("chunking", "max_chunk_size", "PERSONAL_BRAIN_CHUNK_SIZE"),
    ("chunking", "overlap", "PERSONAL_BRAIN_CHUNK_OVERLAP"),
    ("memory", "max_active_turns", "PERSONAL_BRAIN_MAX_ACTIVE_TURNS"),
    ("memory", "max_active_tokens", "PERSONAL_BRAIN_MAX_ACTIVE_TOKENS"),
    ("retry", "timeout", "PERSONAL_BRAIN_PROVIDER_TIMEOUT"),
]


def load_config(environ: Mapping[str, str] | None = None) -> BrainConfig:
    """
    Build a ``BrainConfig`` from defaults overlaid with environment variables.

    Values are validated by pydantic, so a malformed variable raises
    ``pydantic.ValidationError`` instead of being silently ignored.
    """
    env = os.environ if environ is None else environ
    sections: dict[str, dict[str, str]] = {}
    for section, field, var in _ENV_VARS:
        value = env.get(var)
        if value:
            sections.setdefault(section, {})[field] = value

    if "db_path" in sections.get("storage", {}) and "conversations_path" not in sections["storage"]:
        sections["storage"]["conversations_path"] = str(
            Path(sections["storage"]["db_path"]) / "conversations"
        )
    return BrainConfig.model_validate(sections)
