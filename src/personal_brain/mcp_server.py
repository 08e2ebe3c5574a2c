"""
MCP (Model Context Protocol) server for personal-brain.

Exposes content processing, semantic search and tiered conversation memory
as tools, so an assistant can index notes, search them and keep long
conversations within a bounded context.

Run as a stdio server:
    python -m personal_brain.mcp_server

Or via the installed entry-point:
    personal-brain-mcp

Configuration is read from ``PERSONAL_BRAIN_*`` environment variables; see
``personal_brain.config``.
"""

from __future__ import annotations

import json

from mcp.server.fastmcp import FastMCP

from .errors import BrainError
from .models import ConversationTurn, SearchOptions
from .services import BrainServices

INSTRUCTIONS = (
    "Semantic memory for a personal knowledge base. "
    "Use `process_content` whenever a note or profile is created or changed. "
    "Use `search_content` to find passages relevant to a question. "
    "Use `delete_content` when a note is removed. "
    "Use `add_turn` to record each conversation message and `get_history` to "
    "get the bounded conversation context for the next prompt."
)


class BrainTools:
    """Tool implementations bound to one ``BrainServices`` instance."""

    def __init__(self, services: BrainServices) -> None:
        self.services = services

    def process_content(self, content_id: str, text: str, content_type: str = "note") -> str:
        """
        Chunk, embed and store a piece of content, replacing any previous
        version stored under the same ID.

        Args:
            content_id:   Stable ID of the note or profile.
            text:         Full content text.
            content_type: Content type used for filtered searches (default "note").

        Returns:
            A confirmation message with the number of stored chunks.
        """
        try:
            result = self.services.pipeline.process_content(content_id, text, content_type)
        except BrainError as exc:
            return f"Error: {exc}"
        plural = "chunk" if len(result.chunk_ids) == 1 else "chunks"
        message = f"Stored {len(result.chunk_ids)} {plural} for {content_id}."
        if result.failed:
            message += f" {result.failed} without embeddings."
        return message

    def search_content(
        self,
        query: str,
        limit: int = 5,
        content_type: str | None = None,
    ) -> str:
        """
        Search stored content by semantic similarity.

        Args:
            query:        Natural-language question or topic.
            limit:        Maximum number of results (1-100, default 5).
            content_type: Only search content of this type.

        Returns:
            JSON array of results with chunk_id, parent_id, score and text.
        """
        try:
            options = SearchOptions(limit=max(1, min(limit, 100)), type_filter=content_type)
            results = self.services.pipeline.search(query, options)
        except BrainError as exc:
            return f"Error: {exc}"
        if not results:
            return "No matching content found."
        return json.dumps(
            [{**r.model_dump(), "score": round(r.score, 4)} for r in results], indent=2
        )

    def delete_content(self, content_id: str) -> str:
        """
        Delete every stored chunk of a content ID.

        Args:
            content_id: The ID passed to process_content.

        Returns:
            A confirmation message.
        """
        try:
            removed = self.services.pipeline.delete_content(content_id)
        except BrainError as exc:
            return f"Error: {exc}"
        return f"Deleted {removed} chunk(s) for {content_id}."

    def count_chunks(self) -> str:
        """Return the total number of stored chunks."""
        n = self.services.pipeline.store.count()
        return f"{n} {'chunk' if n == 1 else 'chunks'} stored."

    def add_turn(self, conversation_id: str, text: str, role: str = "user") -> str:
        """
        Record one conversation message.

        Older messages are summarized automatically once the conversation
        grows past its active budget.

        Args:
            conversation_id: Conversation ID.
            text:            Message text.
            role:            "user", "assistant" or "system".

        Returns:
            JSON object with turn_id, summarized and degraded fields.
        """
        if role not in ("user", "assistant", "system"):
            return f"Error: unknown role {role!r}"
        try:
            result = self.services.memory.add_turn(
                conversation_id, ConversationTurn(role=role, text=text)
            )
        except BrainError as exc:
            return f"Error: {exc}"
        return json.dumps(
            {
                "turn_id": result.turn.id,
                "summarized": len(result.summary.turn_ids) if result.summary else 0,
                "degraded": result.degraded,
                "warning": result.warning,
            }
        )

    def get_history(self, conversation_id: str, max_tokens: int | None = None) -> str:
        """
        Return the conversation as prompt context: summaries of older turns
        followed by the recent turns verbatim.

        Args:
            conversation_id: Conversation ID.
            max_tokens:      Token budget; older summaries are dropped first.
        """
        try:
            text = self.services.memory.get(conversation_id).format_history_for_prompt(max_tokens)
        except BrainError as exc:
            return f"Error: {exc}"
        return text or "No history."


def create_server(tools: BrainTools) -> FastMCP:
    """Register every ``BrainTools`` method on a new FastMCP server."""
    server = FastMCP("personal-brain", instructions=INSTRUCTIONS)
    for fn in (
        tools.process_content,
        tools.search_content,
        tools.delete_content,
        tools.count_chunks,
        tools.add_turn,
        tools.get_history,
    ):
        server.add_tool(fn)
    return server


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio."""
    server = create_server(BrainTools(BrainServices.from_config()))
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
