"""
Command line for the knowledge store.

Supported commands:
  kbstore ingest notes.txt --category docs
  cat feed.txt | kbstore ingest --source rss --date 2024-05-01
  kbstore search "what changed in the release?" --limit 4
  kbstore stats
  kbstore cleanup --days 90
  kbstore duplicates [--remove] [--threshold 0.8]
  kbstore compact

Global options (--backend, --path, --provider) override the environment
for a single invocation.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from kbstore import __version__
from kbstore.config.settings import Settings, get_settings
from kbstore.core.exceptions import KBStoreError
from kbstore.core.types import KnowledgeMetadata
from kbstore.knowledge.factory import create_knowledge_store
from kbstore.knowledge.store import KnowledgeStore
from kbstore.observability.logging import configure_logging, get_logger

logger = get_logger("cli")


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    knowledge: dict[str, Any] = {}
    if args.backend:
        knowledge["backend"] = args.backend
    if args.path:
        backend = args.backend or settings.knowledge.backend
        knowledge["file_path" if backend == "file" else "sqlite_path"] = args.path

    update: dict[str, Any] = {}
    if knowledge:
        update["knowledge"] = settings.knowledge.model_copy(update=knowledge)
    if args.provider:
        update["embedding"] = settings.embedding.model_copy(update={"provider": args.provider})

    return settings.model_copy(update=update) if update else settings


async def cmd_ingest(store: KnowledgeStore, args: argparse.Namespace) -> int:
    if args.files:
        documents = [(Path(f).read_text(encoding="utf-8"), f) for f in args.files]
    else:
        documents = [(sys.stdin.read(), "stdin")]

    results = []
    for text, name in documents:
        metadata = KnowledgeMetadata(
            source=args.source or name,
            date=args.date or "",
            category=args.category,
            title=args.title,
        )
        if not text.strip():
            logger.warning("Skipping empty input %s", name)
            results.append({"input": name, "stored": 0, "chunks": 0, "duplicates": 0, "failed": 0})
            continue

        result = await store.add_knowledge(text, metadata)
        results.append(
            {
                "input": name,
                "stored": result.stored,
                "chunks": result.chunk_count,
                "duplicates": result.duplicates,
                "failed": result.failed,
                "record_ids": result.record_ids,
            }
        )

    _print_json(results)
    return 1 if any(r["failed"] for r in results) else 0


async def cmd_search(store: KnowledgeStore, args: argparse.Namespace) -> int:
    output = await store.search(
        args.query,
        limit=args.limit,
        threshold=args.threshold,
        category=args.category,
    )
    print(output)
    return 0


async def cmd_stats(store: KnowledgeStore, args: argparse.Namespace) -> int:
    _print_json((await store.stats()).to_dict())
    return 0


async def cmd_cleanup(store: KnowledgeStore, args: argparse.Namespace) -> int:
    removed = await store.cleanup(max_age_days=args.days)
    _print_json({"removed": removed})
    return 0


async def cmd_duplicates(store: KnowledgeStore, args: argparse.Namespace) -> int:
    if args.remove:
        removed = await store.remove_duplicates(threshold=args.threshold)
        _print_json({"removed": removed})
        return 0

    groups = await store.find_duplicates(threshold=args.threshold)
    _print_json(
        [
            {
                "keep": group.keep.id,
                "redundant": [r.id for r in group.redundant],
                "mean_similarity": round(group.mean_similarity, 4),
                "preview": group.keep.content[:80],
            }
            for group in groups
        ]
    )
    return 0


async def cmd_compact(store: KnowledgeStore, args: argparse.Namespace) -> int:
    _print_json({"reclaimed": await store.compact()})
    return 0


COMMANDS = {
    "ingest": cmd_ingest,
    "search": cmd_search,
    "stats": cmd_stats,
    "cleanup": cmd_cleanup,
    "duplicates": cmd_duplicates,
    "compact": cmd_compact,
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="kbstore", description="Embedding-backed knowledge store")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--backend", choices=["file", "sqlite"], default=None)
    ap.add_argument("--path", help="Store location for the selected backend", default=None)
    ap.add_argument("--provider", choices=["openai", "local", "hash"], default=None)
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    ap_ingest = sub.add_parser("ingest", help="Add text files (or stdin) to the store")
    ap_ingest.add_argument("files", nargs="*", help="Text files; reads stdin when omitted")
    ap_ingest.add_argument("--source", default=None)
    ap_ingest.add_argument("--date", default=None, help="ISO date of the content")
    ap_ingest.add_argument("--category", default="general")
    ap_ingest.add_argument("--title", default=None)

    ap_search = sub.add_parser("search", help="Print the passages most relevant to a query")
    ap_search.add_argument("query")
    ap_search.add_argument("--limit", type=int, default=None)
    ap_search.add_argument("--threshold", type=float, default=None)
    ap_search.add_argument("--category", default=None)

    sub.add_parser("stats", help="Show record counts by source and category")

    ap_cleanup = sub.add_parser("cleanup", help="Delete records past the retention window")
    ap_cleanup.add_argument("--days", type=float, default=None)

    ap_dups = sub.add_parser("duplicates", help="List (or remove) near-duplicate groups")
    ap_dups.add_argument("--remove", action="store_true", help="Keep the newest of each group")
    ap_dups.add_argument("--threshold", type=float, default=None)

    sub.add_parser("compact", help="Reclaim space held by deleted records")

    return ap


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    async with create_knowledge_store(settings) as store:
        return await COMMANDS[args.command](store, args)


def main(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = _apply_overrides(settings or get_settings(), args)

    obs = settings.observability
    configure_logging(
        level="DEBUG" if args.verbose else obs.log_level,
        json_output=obs.log_format == "json",
        log_file=obs.log_file,
    )

    try:
        return asyncio.run(_run(args, settings))
    except KBStoreError as e:
        logger.error("%s failed: %s", args.command, e.message, extra={"code": e.code})
        print(json.dumps(e.to_dict(), default=str), file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        print(json.dumps({"error": type(e).__name__, "message": str(e)}), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
