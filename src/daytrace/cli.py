"""Command-line interface for daytrace.

Provides the main entry point for ingesting screenshots, running the
analysis loop, serving the API, and inspecting the timeline.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="daytrace",
        description="Turn periodic screen captures into an activity timeline",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/daytrace.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ingest_parser = subparsers.add_parser("ingest", help="Register screenshots from a directory and close batches")
    ingest_parser.add_argument("directory", type=Path, help="Directory containing screenshot images")

    process_parser = subparsers.add_parser("process", help="Process pending batches once")
    process_parser.add_argument(
        "--batch", type=int, default=None,
        help="Process only this batch id",
    )

    reprocess_parser = subparsers.add_parser("reprocess", help="Reset a batch and run the pipeline again")
    reprocess_parser.add_argument("batch_id", type=int, help="Batch to reprocess")

    run_parser = subparsers.add_parser("run", help="Run the analysis loop until interrupted")
    run_parser.add_argument(
        "--watch", type=Path, default=None,
        help="Directory to ingest screenshots from on every poll",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API server and the analysis loop")
    serve_parser.add_argument(
        "--watch", type=Path, default=None,
        help="Directory to ingest screenshots from on every poll",
    )
    serve_parser.add_argument(
        "--no-loop", action="store_true",
        help="Serve the API only; pending batches are left to another process",
    )

    timeline_parser = subparsers.add_parser("timeline", help="Print timeline cards")
    timeline_parser.add_argument(
        "--hours", type=float, default=24.0,
        help="How many trailing hours to show",
    )

    ask_parser = subparsers.add_parser("ask", help="Stream an answer from the configured provider")
    ask_parser.add_argument("prompt", type=str, help="Prompt text")

    return parser.parse_args(argv)


def _build_processor(settings, store):
    from daytrace.config.credentials import SettingsCredentialStore
    from daytrace.pipeline.orchestrator import BatchProcessor
    from daytrace.providers.factory import ProviderResolver

    resolver = ProviderResolver(
        settings.provider, SettingsCredentialStore(settings), settings.pipeline
    )
    return BatchProcessor(store, resolver, settings.categories, settings.pipeline)


def _print_result(result) -> None:
    line = f"Batch {result.batch_id}: {result.status.value}"
    if result.succeeded:
        line += f" ({len(result.card_ids)} cards)"
    elif result.error_message:
        line += f" - {result.error_message}"
    print(line)


async def _process(settings, store, batch_id: int | None) -> int:
    from daytrace.domain.models import BatchStatus

    processor = _build_processor(settings, store)
    if batch_id is not None:
        ids = [batch_id]
    else:
        ids = [b.id for b in store.list_batches(BatchStatus.PENDING)]
    if not ids:
        print("No pending batches.")
        return 0
    failures = 0
    for bid in ids:
        result = await processor.process_batch(bid)
        _print_result(result)
        failures += 0 if result.succeeded else 1
    return 1 if failures else 0


async def _reprocess(settings, store, batch_id: int) -> int:
    processor = _build_processor(settings, store)
    result = await processor.reprocess_batch(batch_id)
    _print_result(result)
    return 0 if result.succeeded else 1


def _build_loop(settings, store, processor, watch: Path | None):
    from daytrace.pipeline.batching import ingest_directory
    from daytrace.pipeline.runner import AnalysisLoop

    batching = settings.effective_batching()
    on_tick = None
    if watch is not None:
        def on_tick() -> None:
            ingest_directory(store, watch, batching)

    return AnalysisLoop(store, processor, settings.pipeline, on_tick=on_tick)


async def _run_loop(settings, store, watch: Path | None) -> None:
    loop = _build_loop(settings, store, _build_processor(settings, store), watch)
    running = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            running.add_signal_handler(sig, loop.stop)
        except NotImplementedError:
            pass
    await loop.run()


def _serve(settings, store, watch: Path | None, no_loop: bool) -> None:
    from daytrace.endpoint.server import create_app, run_server

    processor = _build_processor(settings, store)
    analysis_loop = None
    if settings.server.run_analysis_loop and not no_loop:
        analysis_loop = _build_loop(settings, store, processor, watch)
    app = create_app(store, processor, analysis_loop)
    run_server(app, host=settings.server.host, port=settings.server.port)


def _print_timeline(store, hours: float) -> None:
    end = int(time.time())
    cards = store.cards_in_range(end - int(hours * 3600), end)
    if not cards:
        print("No activity recorded.")
        return
    for card in cards:
        label = card.category + (f"/{card.subcategory}" if card.subcategory else "")
        print(f"{card.start_time:>8} - {card.end_time:>8}  [{label}] {card.title}")
        if card.summary:
            print(f"{'':21}{card.summary}")


async def _ask(settings, prompt: str) -> int:
    from daytrace.config.credentials import SettingsCredentialStore
    from daytrace.providers.factory import build_provider
    from daytrace.providers.streaming import StreamFailed, TextDelta, TextStream

    provider = build_provider(settings.provider, SettingsCredentialStore(settings), settings.pipeline)
    async with provider:
        async for event in TextStream(provider.stream_text(prompt)):
            if isinstance(event, TextDelta):
                sys.stdout.write(event.text)
                sys.stdout.flush()
            elif isinstance(event, StreamFailed):
                print(f"\nError: {event.message}", file=sys.stderr)
                return 1
    print()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the daytrace CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from daytrace.config.settings import load_settings
    from daytrace.errors import DaytraceError
    from daytrace.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "ask":
        try:
            sys.exit(asyncio.run(_ask(settings, args.prompt)))
        except DaytraceError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    from daytrace.storage.database import TimelineStore

    store = TimelineStore(settings.storage.database_path)
    code = 0
    try:
        if args.command == "ingest":
            from daytrace.pipeline.batching import ingest_directory

            batch_ids = ingest_directory(store, args.directory, settings.effective_batching())
            print(f"Created {len(batch_ids)} batches: {batch_ids}")

        elif args.command == "process":
            code = asyncio.run(_process(settings, store, args.batch))

        elif args.command == "reprocess":
            code = asyncio.run(_reprocess(settings, store, args.batch_id))

        elif args.command == "run":
            logger.info("Starting analysis loop")
            asyncio.run(_run_loop(settings, store, args.watch))

        elif args.command == "serve":
            _serve(settings, store, args.watch, args.no_loop)

        elif args.command == "timeline":
            _print_timeline(store, args.hours)

    except (DaytraceError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    finally:
        store.close()

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
