"""
Command-line interface for personal-brain.

Sub-commands
------------
ingest  – Chunk, embed and store a piece of content under an ID.
search  – Search stored content by semantic similarity.
chunks  – Show the stored chunks of one content ID.
delete  – Delete the chunks of a content ID.
count   – Print the number of stored chunks.
chat    – Add a turn to a conversation.
history – Print a conversation's history as prompt context.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError as PydanticValidationError

from .config import load_config
from .errors import BrainError
from .models import ConversationTurn, SearchOptions
from .services import BrainServices


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="personal-brain",
        description="Chunked semantic search and tiered conversation memory.",
    )
    parser.add_argument(
        "--db",
        default=None,
        metavar="PATH",
        help="Path to the ChromaDB persistent store (default: $PERSONAL_BRAIN_DB_PATH).",
    )
    parser.add_argument(
        "--collection",
        default=None,
        metavar="NAME",
        help="ChromaDB collection name for chunks (default: chunks).",
    )
    parser.add_argument(
        "--conversations",
        default=None,
        metavar="DIR",
        help="Directory holding conversation history files.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    # ingest
    p_ingest = sub.add_parser("ingest", help="Chunk, embed and store content.")
    p_ingest.add_argument("id", help="Content ID (e.g. a note ID).")
    p_ingest.add_argument("text", nargs="?", help="Content text (reads stdin if omitted).")
    p_ingest.add_argument("--type", default="note", dest="content_type", help="Content type.")

    # search
    p_search = sub.add_parser("search", help="Search stored content.")
    p_search.add_argument("query", help="Natural-language query.")
    p_search.add_argument(
        "-n",
        type=int,
        default=5,
        metavar="N",
        help="Number of results to return (default: 5).",
    )
    p_search.add_argument("--type", default=None, dest="content_type", help="Only this type.")
    p_search.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Output results as JSON.",
    )

    # chunks
    p_chunks = sub.add_parser("chunks", help="Show the chunks of a content ID.")
    p_chunks.add_argument("id", help="Content ID.")
    p_chunks.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # delete
    p_delete = sub.add_parser("delete", help="Delete the chunks of a content ID.")
    p_delete.add_argument("id", help="Content ID to delete.")

    # count
    sub.add_parser("count", help="Print the number of stored chunks.")

    # chat
    p_chat = sub.add_parser("chat", help="Add a turn to a conversation.")
    p_chat.add_argument("conversation", help="Conversation ID.")
    p_chat.add_argument("text", help="Turn text.")
    p_chat.add_argument(
        "--role", default="user", choices=["user", "assistant", "system"], help="Turn role."
    )

    # history
    p_history = sub.add_parser("history", help="Print conversation history.")
    p_history.add_argument("conversation", help="Conversation ID.")
    p_history.add_argument("--max-tokens", type=int, default=None, metavar="N")
    p_history.add_argument(
        "--json", action="store_true", dest="as_json", help="Dump all tiers as JSON."
    )

    return parser


def _build_services(args: argparse.Namespace) -> BrainServices:
    config = load_config()
    storage = config.storage.model_copy(
        update={
            key: value
            for key, value in (
                ("db_path", args.db),
                ("collection_name", args.collection),
                ("conversations_path", args.conversations),
            )
            if value is not None
        }
    )
    return BrainServices.from_config(config.model_copy(update={"storage": storage}))


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return _run(args, _build_services(args))
    except (BrainError, PydanticValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _run(args: argparse.Namespace, services: BrainServices) -> int:
    pipeline = services.pipeline

    if args.command == "ingest":
        text = args.text
        if text is None:
            text = sys.stdin.read()
        if not text.strip():
            print("Error: no text provided.", file=sys.stderr)
            return 1
        result = pipeline.process_content(args.id, text, content_type=args.content_type)
        print(f"Stored {len(result.chunk_ids)} chunk(s) for {args.id}.")
        if result.failed:
            print(f"Warning: {result.failed} chunk(s) have no embedding.", file=sys.stderr)

    elif args.command == "search":
        options = SearchOptions(limit=args.n, type_filter=args.content_type)
        results = pipeline.search(args.query, options)
        if not results:
            print("No matching content found.")
            return 0
        if args.as_json:
            print(json.dumps([r.model_dump() for r in results], indent=2))
        else:
            for i, r in enumerate(results, 1):
                print(f"[{i}] (score={r.score:.3f}) {r.parent_id}")
                print(f"    {r.text[:200]}")
                print(f"    chunk={r.chunk_id}")
                print()

    elif args.command == "chunks":
        chunk_set = pipeline.store.get_chunks(args.id)
        if not chunk_set.chunks:
            print(f"No chunks stored for {args.id}.")
            return 0
        if args.as_json:
            print(chunk_set.model_dump_json(indent=2, exclude={"chunks": {"__all__": {"embedding"}}}))
        else:
            for c in chunk_set.chunks:
                marker = "" if c.embedding is not None else " (no embedding)"
                print(f"#{c.index} id={c.id}{marker}")
                print(f"    {c.text[:120]}")
                print()

    elif args.command == "delete":
        removed = pipeline.delete_content(args.id)
        print(f"Deleted {removed} chunk(s) for {args.id}.")

    elif args.command == "count":
        print(pipeline.store.count())

    elif args.command == "chat":
        turn = ConversationTurn(role=args.role, text=args.text)
        result = services.memory.add_turn(args.conversation, turn)
        print(f"Added turn {result.turn.id}.")
        if result.summary is not None:
            print(f"Summarized {len(result.summary.turn_ids)} older turn(s).")
        if result.degraded:
            print(f"Warning: {result.warning}", file=sys.stderr)

    elif args.command == "history":
        manager = services.memory.get(args.conversation)
        if args.as_json:
            print(manager.get_tiered_history().model_dump_json(indent=2))
        else:
            text = manager.format_history_for_prompt(args.max_tokens)
            print(text if text else "No history.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
