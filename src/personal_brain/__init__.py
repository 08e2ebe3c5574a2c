"""
personal-brain: tiered conversation memory and chunked semantic search for
a personal knowledge assistant.

Keeps long conversations within a bounded context by summarizing and
archiving old turns, and makes notes searchable by splitting them into
overlapping chunks and ranking chunk embeddings by cosine similarity.
"""

from .chunking import split_text
from .embeddings import EmbeddingOrchestrator
from .memory import MemoryRegistry, TieredMemoryManager
from .models import (
    ContentChunk,
    ConversationSummary,
    ConversationTurn,
    SearchOptions,
    SimilarityResult,
    TieredHistory,
)
from .pipeline import ContentProcessingPipeline
from .similarity import SimilarityIndex, cosine_similarity

__all__ = [
    "ContentChunk",
    "ContentProcessingPipeline",
    "ConversationSummary",
    "ConversationTurn",
    "EmbeddingOrchestrator",
    "MemoryRegistry",
    "SearchOptions",
    "SimilarityIndex",
    "SimilarityResult",
    "TieredHistory",
    "TieredMemoryManager",
    "cosine_similarity",
    "split_text",
]
