"""Command-line entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Build AppState (HTTP client, stream opener, durable cache)
- Dispatch the subcommand

Generated documents go to stdout or ``--output``; logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import structlog

from patchstream import __version__
from patchstream.applier import apply_operations_with_report
from patchstream.cache import GenerationCache
from patchstream.config import Settings
from patchstream.errors import PatchStreamError
from patchstream.fetcher import HttpStreamOpener, build_http_client
from patchstream.parser import is_patch_stream, parse_operations
from patchstream.session import GenerationSession, GenerationStatus
from patchstream.state import AppState
from patchstream.storage import SqliteStore
from patchstream.stream import page_display_name

log = structlog.get_logger()

_MS_PER_DAY = 24 * 60 * 60 * 1000


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout carries the generated document
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@asynccontextmanager
async def app_state(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for one command."""
    http_client = build_http_client(settings.generator)
    opener = HttpStreamOpener(http_client, settings.generator.url)

    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    store = SqliteStore(db, max_value_bytes=settings.cache.max_value_bytes)
    await store.init_db()
    cache = GenerationCache(
        store,
        ttl_ms=settings.cache.ttl_days * _MS_PER_DAY,
        max_entries=settings.cache.max_entries,
    )

    try:
        yield AppState(
            settings=settings,
            http_client=http_client,
            opener=opener,
            cache=cache,
            db=db,
        )
    finally:
        await http_client.aclose()
        await db.close()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _write_output(document: str, output: str | None) -> None:
    if output:
        Path(output).write_text(document, encoding="utf-8")
    else:
        sys.stdout.write(document)
        sys.stdout.write("\n")


async def _generate(settings: Settings, args: argparse.Namespace) -> int:
    async with app_state(settings) as state:
        assert state.opener is not None
        use_cache = settings.cache.enabled and not args.no_cache
        session = GenerationSession(state.opener, state.cache if use_cache else None)

        if args.base:
            base_document = Path(args.base).read_text(encoding="utf-8")
            outcome = await session.refine(
                args.prompt, base_document, original_prompt=args.original_prompt or args.prompt
            )
        else:
            outcome = await session.generate(args.prompt)

    if outcome.status is GenerationStatus.ABORTED:
        log.info("generation_aborted")
        return 130
    if outcome.files and len(outcome.files) > 1:
        log.info("generation_pages", pages=[page_display_name(name) for name in outcome.files])
    _write_output(outcome.document, args.output)
    return 0


def _apply(args: argparse.Namespace) -> int:
    """Apply a saved patch stream to a document, offline."""
    base_document = Path(args.base).read_text(encoding="utf-8")
    patch_text = Path(args.patch).read_text(encoding="utf-8")
    if not is_patch_stream(patch_text):
        log.error("not_a_patch_stream", path=args.patch)
        return 2

    report = apply_operations_with_report(base_document, parse_operations(patch_text))
    log.info(
        "patch_file_applied",
        outcomes=[str(outcome) for outcome in report.outcomes],
        applied=report.applied,
        failed=report.failed,
    )
    _write_output(report.document, args.output)
    return 1 if report.failed else 0


async def _cache_stats(settings: Settings) -> int:
    async with app_state(settings) as state:
        assert state.cache is not None
        stats = await state.cache.stats()
    sys.stdout.write(stats.model_dump_json(indent=2) + "\n")
    return 0


async def _cache_clear(settings: Settings) -> int:
    async with app_state(settings) as state:
        assert state.cache is not None
        await state.cache.clear()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="patchstream")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Stream a generation and print the final document")
    gen.add_argument("prompt")
    gen.add_argument("--base", help="Refine this document instead of generating from scratch")
    gen.add_argument("--original-prompt", help="Prompt that produced --base (for cache invalidation)")
    gen.add_argument("--output", "-o")
    gen.add_argument("--no-cache", action="store_true")

    apply = sub.add_parser("apply", help="Apply a saved patch stream to a document")
    apply.add_argument("base")
    apply.add_argument("patch")
    apply.add_argument("--output", "-o")

    sub.add_parser("cache-stats", help="Show generation cache statistics")
    sub.add_parser("cache-clear", help="Remove all cached generations")
    return parser


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = Settings()
    _setup_logging(settings)

    try:
        if args.command == "generate":
            return asyncio.run(_generate(settings, args))
        if args.command == "apply":
            return _apply(args)
        if args.command == "cache-stats":
            return asyncio.run(_cache_stats(settings))
        return asyncio.run(_cache_clear(settings))
    except PatchStreamError as exc:
        log.error("generation_failed", **exc.to_dict()["error"])
        return 1


if __name__ == "__main__":
    sys.exit(main())
