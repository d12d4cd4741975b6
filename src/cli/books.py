# =============================================================================
# src/cli/books.py: Book processing operator CLI
# =============================================================================
#
# Runs the book pipeline outside the web server:
#
#   python -m src.cli process <book_id> [--force]
#   python -m src.cli trigger <book_id> [--idempotency-key KEY]
#   python -m src.cli reset <book_id>
#
# "process" builds the same components as the API (src/main.py) and runs
# the job in this process.  "trigger" asks the remote processing backend
# to do it instead and prints the structured result of that call.
# =============================================================================

"""Operator CLI for processing, triggering, and resetting books."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from src.config.settings import Settings
from src.utils.errors import StoryShelfError


async def _with_components(app_settings: Settings, handler, args: argparse.Namespace) -> int:  # noqa: ANN001
    # Deferred: building components pulls in chromadb and the openai SDK.
    from src.main import build_components

    components = build_components(app_settings)
    try:
        await components["book_store"].initialize()
        return await handler(args, components)
    finally:
        await components["job_dispatcher"].shutdown()
        await components["http_client"].aclose()


async def _handle_process(args: argparse.Namespace, components: dict[str, Any]) -> int:
    dispatcher = components["job_dispatcher"]
    tracker = components["status_tracker"]

    acceptance = await dispatcher.submit(args.book_id, force=args.force)
    print(f"Processing book {acceptance.book_id} (forced={acceptance.forced})")
    await dispatcher.wait(args.book_id)

    snapshot = await tracker.get_status(args.book_id)
    print(f"  Status:   {snapshot.processing_status.value}")
    print(f"  Progress: {snapshot.processing_progress or '-'}")
    if snapshot.error_message:
        print(f"  Error:    {snapshot.error_message}")
        return 1
    return 0


async def _handle_reset(args: argparse.Namespace, components: dict[str, Any]) -> int:
    snapshot = await components["job_dispatcher"].reset(args.book_id)
    print(f"Book {snapshot.book_id} reset to {snapshot.processing_status.value}")
    return 0


async def _handle_trigger(args: argparse.Namespace, components: dict[str, Any]) -> int:
    result = await components["trigger_client"].trigger_book_processing(
        args.book_id, idempotency_key=args.idempotency_key
    )
    print(json.dumps(result.model_dump(), indent=2, default=str))
    return 0 if result.ok else 1


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.cli",
        description="Process, trigger, or reset StoryShelf books.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Book commands")

    process_parser = subparsers.add_parser(
        "process", help="Run the processing job for a book in this process"
    )
    process_parser.add_argument("book_id", help="Book id")
    process_parser.add_argument(
        "--force",
        action="store_true",
        help="Reprocess a completed book (clears its chunks first)",
    )

    trigger_parser = subparsers.add_parser(
        "trigger", help="Ask the remote processing backend to process a book"
    )
    trigger_parser.add_argument("book_id", help="Book id")
    trigger_parser.add_argument(
        "--idempotency-key",
        dest="idempotency_key",
        default=None,
        help="Idempotency-Key header sent with every attempt",
    )

    reset_parser = subparsers.add_parser("reset", help="Restart a failed or interrupted book")
    reset_parser.add_argument("book_id", help="Book id")

    return parser


_HANDLERS = {
    "process": _handle_process,
    "trigger": _handle_trigger,
    "reset": _handle_reset,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse the subcommand, run it, and exit with its status code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    try:
        exit_code = asyncio.run(_with_components(app_settings, _HANDLERS[args.command], args))
    except StoryShelfError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
