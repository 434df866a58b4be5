"""Standalone CLI for managing a vecsearch store without the HTTP server.

Usage::

    python -m vecsearch.cli ingest notes.txt --source-id notes
    python -m vecsearch.cli search "how do snapshots work" -k 5
    python -m vecsearch.cli rebuild
    python -m vecsearch.cli stats
    python -m vecsearch.cli recall --sample-size 200 -k 10

Every command assembles the same components the API server uses (see
:func:`vecsearch.main.build_components`), so the SQLite store and the index
snapshot on disk are shared with a stopped server.  Do not run the CLI
against files a live server is writing.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from vecsearch.config.loader import load_settings
from vecsearch.config.settings import Settings
from vecsearch.main import build_components, shutdown_components
from vecsearch.models.ingestion import SourceDocument
from vecsearch.utils.errors import VecSearchError
from vecsearch.utils.logging import configure_logging


async def _handle_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    ingestion = components["ingestion"]
    if ingestion is None:
        print("Error: ingestion needs an embedding provider.", file=sys.stderr)
        return 1

    path = Path(args.file)
    source_id = args.source_id or path.stem
    print(f"Ingesting {path} as source '{source_id}'")
    result = await ingestion.ingest(
        SourceDocument(
            source_id=source_id,
            content=path.read_text(encoding="utf-8"),
            metadata={"path": str(path)},
            chunk_size=args.chunk_size,
            overlap=args.overlap,
        )
    )

    print("\nIngestion complete:")
    print(f"  Chunks created:   {result.chunks_created}")
    print(f"  Chunks updated:   {result.chunks_updated}")
    print(f"  Chunks unchanged: {result.chunks_unchanged}")
    print(f"  Chunks deleted:   {result.chunks_deleted}")
    print(f"  Time:             {result.ingestion_time:.2f}s")
    return 0


async def _handle_search(args: argparse.Namespace, components: dict[str, Any]) -> int:
    results = await components["query_engine"].search_text(args.text, args.k)
    if not results.hits:
        print("No results.")
        return 0
    for rank, hit in enumerate(results.hits, start=1):
        preview = (hit.content or "").replace("\n", " ")[:80]
        print(f"{rank:>3}. {hit.distance:.4f}  {hit.id:<30} {preview}")
    return 0


async def _handle_rebuild(components: dict[str, Any]) -> int:
    manager = components["index_manager"]
    before = manager.snapshot.version
    snapshot = await manager.rebuild()
    print(f"Rebuilt {snapshot.kind.value} index: version {before} -> {snapshot.version}")
    print(f"  Rows: {snapshot.built_from}")
    return 0


async def _handle_stats(components: dict[str, Any]) -> int:
    index = components["index_manager"].stats()
    store = components["store"].stats()

    print("Index Statistics")
    print("=" * 40)
    print(f"  Structure:        {index.kind.value}")
    print(f"  Metric:           {index.metric.value}")
    print(f"  Dimension:        {index.dimension}")
    print(f"  Version:          {index.version}")
    print(f"  Live documents:   {index.live_count}")
    print(f"  Delta entries:    {index.delta_count}")
    print(f"  Tombstones:       {index.tombstone_count}")
    if index.list_imbalance is not None:
        print(f"  List imbalance:   {index.list_imbalance:.2f}")
    if index.rebuild_reasons:
        print(f"  Rebuild advised:  {', '.join(index.rebuild_reasons)}")
    print(f"\n  Stored documents: {store.document_count}")
    print(f"  Metadata keys:    {', '.join(store.metadata_keys) or '-'}")
    return 0


async def _handle_recall(args: argparse.Namespace, components: dict[str, Any]) -> int:
    manager = components["index_manager"]
    report = await asyncio.to_thread(manager.estimate_recall, args.sample_size, args.k)
    flag = "  (below floor)" if report.degraded else ""
    print(
        f"recall@{report.k} = {report.recall:.3f} over {report.sample_size} queries "
        f"[{report.kind.value}, floor {report.floor}]{flag}"
    )
    return 1 if report.degraded else 0


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    components = await build_components(app_settings)
    try:
        if args.command == "ingest":
            return await _handle_ingest(args, components)
        if args.command == "search":
            return await _handle_search(args, components)
        if args.command == "rebuild":
            return await _handle_rebuild(components)
        if args.command == "stats":
            return await _handle_stats(components)
        return await _handle_recall(args, components)
    finally:
        await shutdown_components(components)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m vecsearch.cli",
        description="Manage a vecsearch store and its index.",
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="YAML config file (default: %(default)s)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Chunk, embed and store a text file")
    ingest_parser.add_argument("file", help="Path to a UTF-8 text file")
    ingest_parser.add_argument(
        "--source-id", dest="source_id", help="Source identifier (default: file stem)"
    )
    ingest_parser.add_argument("--chunk-size", dest="chunk_size", type=int, default=None)
    ingest_parser.add_argument("--overlap", type=int, default=None)

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search by text")
    search_parser.add_argument("text", help="Query text")
    search_parser.add_argument("-k", type=int, default=10, help="Results to return")

    # -- rebuild --
    subparsers.add_parser("rebuild", help="Rebuild the ANN index from the store")

    # -- stats --
    subparsers.add_parser("stats", help="Show index and store statistics")

    # -- recall --
    recall_parser = subparsers.add_parser("recall", help="Estimate recall@k against exact search")
    recall_parser.add_argument("-k", type=int, default=10)
    recall_parser.add_argument("--sample-size", dest="sample_size", type=int, default=100)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Exits with the handler's status code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        app_settings = load_settings(args.config)
        configure_logging(log_level=app_settings.log_level)
        exit_code = asyncio.run(_run(args, app_settings))
    except VecSearchError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
