"""Command-line entry point for the KBEngine knowledge base."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kbengine.config import config
from kbengine.errors import KBEngineError
from kbengine.pipeline import RAGPipeline

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INCOMPLETE = 2

OPENAI_COMMANDS = {"ingest", "ingest-text", "ask"}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Ingest documents into the KBEngine knowledge base and ask questions.",
    )
    parser.add_argument(
        "--backend",
        choices=["sqlite", "faiss"],
        default=None,
        help="Vector store backend (default: VECTOR_BACKEND or sqlite).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest TXT or PDF files.")
    ingest.add_argument("paths", nargs="+", type=Path, help="Files to ingest.")

    ingest_text = subparsers.add_parser(
        "ingest-text", help="Ingest a text file under an explicit document name."
    )
    ingest_text.add_argument("name", help="Document name used for de-duplication.")
    ingest_text.add_argument("text_file", type=Path, help="UTF-8 text file.")

    ask = subparsers.add_parser("ask", help="Ask a question.")
    ask.add_argument("question", help="Question to answer.")
    ask.add_argument(
        "--threshold",
        type=float,
        default=None,
        help=f"Minimum similarity (default: {config.DEFAULT_THRESHOLD}).",
    )
    ask.add_argument(
        "--top-k",
        type=int,
        default=None,
        help=f"Maximum matches (default: {config.DEFAULT_TOP_K}).",
    )

    subparsers.add_parser("files", help="List ingested document names.")

    check = subparsers.add_parser("check", help="Check whether a document exists.")
    check.add_argument("name", help="Document name.")

    delete = subparsers.add_parser("delete", help="Delete a document's chunks.")
    delete.add_argument("name", help="Document name.")

    return parser.parse_args(argv)


def emit(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


async def run_command(pipeline: RAGPipeline, args: argparse.Namespace) -> int:
    """Execute one subcommand and print its JSON result.

    Returns:
        Process exit code.
    """
    if args.command == "ingest":
        exit_code = EXIT_OK
        for path in args.paths:
            result = await pipeline.process_document(path)
            emit(result.to_dict())
            if result.status not in {"success", "skipped"}:
                exit_code = EXIT_INCOMPLETE
        return exit_code

    if args.command == "ingest-text":
        text = args.text_file.read_text(encoding="utf-8")
        result = await pipeline.ingest_text(args.name, text)
        emit(result.to_dict())
        return EXIT_OK if result.status in {"success", "skipped"} else EXIT_INCOMPLETE

    if args.command == "ask":
        answer = await pipeline.ask(args.question, threshold=args.threshold, top_k=args.top_k)
        emit(answer.to_dict())
        return EXIT_OK

    if args.command == "files":
        files = await pipeline.list_documents()
        emit({"count": len(files), "files": files})
        return EXIT_OK

    if args.command == "check":
        emit({"exists": await pipeline.document_exists(args.name)})
        return EXIT_OK

    removed = await pipeline.delete_document(args.name)
    emit({"file_name": args.name, "deleted_chunks": removed})
    return EXIT_OK


def run(args: argparse.Namespace, logger: Logger) -> int:
    """Build the pipeline and run the command, mapping errors to exit codes."""  # noqa: DOC201
    try:
        pipeline = RAGPipeline(vector_backend=args.backend)
        return asyncio.run(run_command(pipeline, args))
    except (KBEngineError, OSError, ValueError) as exc:
        if config.is_development():
            logger.exception("Command %s failed", args.command)
        else:
            logger.error("Command %s failed: %s", args.command, exc)  # noqa: TRY400
        return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and dispatch the requested command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    if args.command in OPENAI_COMMANDS:
        try:
            config.validate()
        except ValueError:
            logger.exception("Configuration invalid")
            return EXIT_ERROR

    return run(args, logger)


if __name__ == "__main__":
    sys.exit(main())
