"""
Command line front end.

    filesearch build ~/Documents ~/Projects
    filesearch search "quarterly revenue" --mode hybrid
    filesearch update
    filesearch status
    filesearch watch
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import IndexConfiguration, set_config
from .errors import SearchEngineError
from .events import IndexProgress
from .hybrid import HybridSearchEngine
from .live import LiveScanner
from .manager import IndexManager
from .models import IndexStatus, SearchMode, SearchOptions, SearchResult
from .watcher import IndexWatcher, run_periodic_updates


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="filesearch", description="Local full-text file search")
    parser.add_argument("--index-path", help="SQLite index file (default: ~/.filesearch/index.db)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Rebuild the index from scratch")
    build.add_argument("directories", nargs="*", help="Directories to index")
    build.add_argument("--names-only", action="store_true", help="Do not index file content")
    build.add_argument("--concurrency", type=int, help="Parallel parser workers")

    sub.add_parser("update", help="Apply changes since the last build/update")

    search = sub.add_parser("search", help="Search by name and content")
    search.add_argument("term")
    search.add_argument("--mode", choices=[m.value for m in SearchMode], default=SearchMode.HYBRID.value)
    search.add_argument("--regex", action="store_true")
    search.add_argument("--case-sensitive", action="store_true")
    search.add_argument("--whole-word", action="store_true")
    fields = search.add_mutually_exclusive_group()
    fields.add_argument("--name-only", action="store_true")
    fields.add_argument("--content-only", action="store_true")
    search.add_argument("--ext", action="append", default=[], help="Only these extensions")
    search.add_argument("--dir", action="append", default=[], help="Only under these directories")
    search.add_argument("--max-results", type=int, default=50)

    sub.add_parser("status", help="Show index status")
    sub.add_parser("delete", help="Delete the index")
    sub.add_parser("compact", help="Purge deleted documents and reclaim space")

    watch = sub.add_parser("watch", help="Keep the index updated until interrupted")
    watch.add_argument("--interval", type=float, help="Also update every N minutes")

    return parser


def load_config(args: argparse.Namespace) -> IndexConfiguration:
    config = IndexConfiguration.from_env()
    if args.index_path:
        config.index_path = Path(args.index_path)
    if getattr(args, "directories", None):
        config.indexed_directories = [Path(d) for d in args.directories]
    if getattr(args, "names_only", False):
        config.index_content = False
    if getattr(args, "concurrency", None):
        config.extractor_concurrency = args.concurrency
    config.__post_init__()
    set_config(config)
    return config


def format_result(result: SearchResult) -> str:
    line = f"{result.relevance_score:6.2f}  [{result.match_type.value:7}]  {result.path}"
    if result.matching_lines:
        line += f"\n          {result.matching_lines[0]}"
    return line


def format_status(status: IndexStatus) -> str:
    lines = [
        f"State:        {status.state.value}",
        f"Documents:    {status.document_count}",
        f"Directories:  {status.directory_count}",
        f"Size:         {status.index_size / 1024:.1f} KB",
        f"Version:      {status.version or '-'}",
        f"Created:      {status.created or '-'}",
        f"Last updated: {status.last_updated or '-'}",
    ]
    if status.error_message:
        lines.append(f"Error:        {status.error_message}")
    return "\n".join(lines)


def _print_progress(event: IndexProgress) -> None:
    if event.documents_processed % 500 == 0:
        print(f"  {event.documents_processed} files ({event.speed:.0f}/s) {event.current_file}")


async def run(args: argparse.Namespace) -> int:
    config = load_config(args)
    manager = IndexManager(config)
    manager.subscribe(_print_progress, IndexProgress)

    try:
        if args.command == "build":
            stats = await manager.build_index()
            print(f"\n{stats}")

        elif args.command == "update":
            stats = await manager.update_index()
            print(f"\n{stats}")

        elif args.command == "search":
            options = SearchOptions(
                search_term=args.term,
                search_in_name=not args.content_only,
                search_in_content=not args.name_only,
                use_regex=args.regex,
                case_sensitive=args.case_sensitive,
                whole_word=args.whole_word,
                include_extensions=frozenset(args.ext),
                include_directories=tuple(Path(d) for d in args.dir),
                max_results=args.max_results,
            )
            live = LiveScanner(roots=config.indexed_directories,
                               concurrency=config.extractor_concurrency,
                               index_path=config.index_path)
            engine = HybridSearchEngine(manager, live)
            try:
                results = await engine.search(options, SearchMode(args.mode))
            finally:
                live.close()
            for result in results:
                print(format_result(result))
            print(f"\n{len(results)} results")

        elif args.command == "status":
            print(format_status(manager.get_status()))

        elif args.command == "delete":
            await manager.delete_index()
            print("Index deleted.")

        elif args.command == "compact":
            purged = await manager.compact()
            print(f"Purged {purged} deleted documents.")

        elif args.command == "watch":
            if not manager.is_available:
                await manager.build_index()
            watcher = IndexWatcher(manager)
            watcher.start()
            print("Watching for changes (Ctrl+C to stop)...")
            try:
                await run_periodic_updates(manager, args.interval)
            finally:
                watcher.stop()

    except SearchEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        manager.close()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nStopped.")
        return 130
