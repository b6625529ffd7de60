"""
Admin CLI for DocStore.

Inspects and maintains a store configured through environment variables
(see config.py). Every command prints JSON to stdout.

Usage:
    docstore-admin get COLLECTION ID [--fields a,b]
    docstore-admin ops COLLECTION ID [--from N] [--to N]
    docstore-admin history COLLECTION ID [--limit N]
    docstore-admin query COLLECTION '{"status": "open", "$count": true}'
    docstore-admin drop COLLECTION
    docstore-admin drop-all

Invariants:
    - Exit code 0 on success, 1 on any configuration, store or backend error
    - The store is always closed before exit

How to change safely:
    - Keep stdout machine-readable; diagnostics go to the log
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import json_log_formatter

from .backend.base import BackendError
from .config import StoreConfig
from .errors import DocStoreError
from .store import DocumentStore, QueryResult

logger = logging.getLogger(__name__)


def setup_logging(config: StoreConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Store configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Logs go to stderr so stdout stays JSON
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def create_store(config: StoreConfig) -> DocumentStore:
    """Create a store with the configured backend."""
    return DocumentStore.from_config(config)


def _query_output(result: QueryResult) -> dict[str, Any]:
    return {
        "results": [snapshot.to_dict() for snapshot in result.results],
        "extra": result.extra,
    }


async def run_command(store: DocumentStore, args: argparse.Namespace) -> Any:
    """Execute one CLI command against a connected store.

    Returns:
        JSON-compatible command output
    """
    if args.command == "get":
        fields = args.fields.split(",") if args.fields else None
        snapshot = await store.get_snapshot(args.collection, args.id, fields=fields)
        return snapshot.to_dict()

    if args.command == "ops":
        ops = await store.get_operations(
            args.collection, args.id, from_version=args.from_version, to_version=args.to_version
        )
        return [op.to_dict() for op in ops]

    if args.command == "history":
        ops = await store.get_operation_history(args.collection, args.id, limit=args.limit)
        return [op.to_dict() for op in ops]

    if args.command == "query":
        try:
            query = json.loads(args.query)
        except json.JSONDecodeError as e:
            raise ValueError(f"Query is not valid JSON: {e}")
        return _query_output(await store.query(args.collection, query))

    if args.command == "drop":
        await store.drop_collection(args.collection)
        return {"dropped": args.collection}

    if args.command == "drop-all":
        await store.drop_all()
        return {"dropped": "*"}

    raise ValueError(f"Unknown command: {args.command}")


async def _run(config: StoreConfig, args: argparse.Namespace) -> Any:
    async with create_store(config) as store:
        return await run_command(store, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DocStore admin tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    get_parser = subparsers.add_parser("get", help="Print a document snapshot")
    get_parser.add_argument("collection", help="Collection name")
    get_parser.add_argument("id", help="Document id")
    get_parser.add_argument("--fields", help="Comma-separated top-level fields to keep")

    ops_parser = subparsers.add_parser("ops", help="Print operations of a document")
    ops_parser.add_argument("collection", help="Collection name")
    ops_parser.add_argument("id", help="Document id")
    ops_parser.add_argument(
        "--from", dest="from_version", type=int, default=1, help="First version (default: 1)"
    )
    ops_parser.add_argument(
        "--to", dest="to_version", type=int, default=None, help="Version to stop before"
    )

    history_parser = subparsers.add_parser(
        "history", help="Print the operation chain of a document, newest first"
    )
    history_parser.add_argument("collection", help="Collection name")
    history_parser.add_argument("id", help="Document id")
    history_parser.add_argument("--limit", type=int, default=None, help="Maximum operations")

    query_parser = subparsers.add_parser("query", help="Run a query against a collection")
    query_parser.add_argument("collection", help="Collection name")
    query_parser.add_argument("query", help="Query object as JSON")

    drop_parser = subparsers.add_parser("drop", help="Drop a collection")
    drop_parser.add_argument("collection", help="Collection name")

    subparsers.add_parser("drop-all", help="Drop every collection under the key prefix")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = StoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    try:
        output = asyncio.run(_run(config, args))
    except (ValueError, DocStoreError, BackendError) as e:
        logger.error(f"Command failed: {e}")
        print(json.dumps({"error": str(e)}))
        sys.exit(1)

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
