"""
elasticdocs CLI — Command-Line Interface
========================================

Command-line access to a cluster through an elasticdocs Session.

Usage:
    elasticdocs indices
    elasticdocs create orders
    elasticdocs put orders order 1 '{"total": 12}'
    elasticdocs get orders order 1
    elasticdocs search orders '{"query": {"match_all": {}}}' --limit 10
    elasticdocs load orders order data/orders.jsonl --id-field id
    elasticdocs mapping put orders order mapping.json
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import SessionConfig, parse_hosts
from .errors import ElasticDocsError
from .query import load_json
from .session import Session

logger = logging.getLogger(__name__)


def get_session(args) -> Session:
    """Build a session from environment defaults and global options."""
    config = SessionConfig.from_env()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.cluster:
        config.cluster = args.cluster
    if args.api_key:
        config.api_key = args.api_key
    if args.other_hosts:
        config.other_hosts = parse_hosts(args.other_hosts, config.port)
    return Session.from_config(config)


def cmd_indices(session: Session, args) -> None:
    """List all indices."""
    for name in session.get_indexes():
        print(name)


def cmd_create(session: Session, args) -> None:
    """Create an index."""
    if session.create_index(args.index):
        print(f"Created index: {args.index}")
    else:
        print(f"Index already exists: {args.index}")


def cmd_delete(session: Session, args) -> None:
    """Delete an index."""
    if not args.force:
        confirm = input(f"Delete index '{args.index}'? [y/N] ")
        if confirm.lower() != 'y':
            print("Aborted.")
            return

    if session.delete_index(args.index):
        print(f"Deleted index: {args.index}")
    else:
        print(f"Index does not exist: {args.index}")


def cmd_get(session: Session, args) -> None:
    """Print one document."""
    print(session.get_document(args.index, args.type, args.id))


def cmd_put(session: Session, args) -> None:
    """Create or replace one document."""
    response = session.put_document(args.index, args.type, args.id, args.document)
    print(f"{args.id}: {response.get('result', 'ok')}")


def cmd_remove(session: Session, args) -> None:
    """Delete one document."""
    session.delete_document(args.index, args.type, args.id)
    print(f"Deleted document: {args.id}")


def cmd_search(session: Session, args) -> None:
    """Page through the hits of a query."""
    cursor = session.get_documents(
        args.index,
        args.query,
        doc_type=args.type,
        page_size=args.page_size,
        on_error="raise",
    )

    print(f"Total hits: {cursor.total_hits():,}")

    shown = 0
    while (args.limit is None or shown < args.limit) and cursor.has_next():
        print(cursor.next())
        shown += 1

    for name in args.facet or []:
        print(f"{name}: {json.dumps(cursor.facet(name))}")


def cmd_load(session: Session, args) -> None:
    """Bulk index a JSONL file through a batch writer."""
    total = 0
    with open(args.file, 'r', encoding='utf-8') as f, \
            session.get_document_set(sync=args.sync) as docs:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            doc = load_json(line, what=f"line {line_no}")
            doc_id = doc.get(args.id_field) if args.id_field else None
            docs.add(args.index, args.type, str(doc_id if doc_id is not None else line_no), doc)
            total += 1

    if docs.dropped:
        print(f"Loaded {total:,} documents, {docs.dropped:,} dropped")
    else:
        print(f"Loaded {total:,} documents")


def cmd_mapping(session: Session, args) -> None:
    """Show or define a type mapping."""
    if args.action == "get":
        print(session.get_mapping(args.index, args.type))
        return

    if not args.file:
        raise SystemExit("mapping put requires a FILE")
    with open(args.file, 'r', encoding='utf-8') as f:
        session.put_mapping(args.index, args.type, f)
    print(f"Put mapping for {args.index}/{args.type}")


def cmd_refresh(session: Session, args) -> None:
    """Refresh an index."""
    session.refresh(args.index)
    print(f"Refreshed index: {args.index}")


COMMANDS = {
    "indices": cmd_indices,
    "create": cmd_create,
    "delete": cmd_delete,
    "get": cmd_get,
    "put": cmd_put,
    "remove": cmd_remove,
    "search": cmd_search,
    "load": cmd_load,
    "mapping": cmd_mapping,
    "refresh": cmd_refresh,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="elasticdocs",
        description="elasticdocs — documents, mappings and paged search on Elasticsearch"
    )

    # Global options
    parser.add_argument("--host", help="Primary node host", default=None)
    parser.add_argument("--port", type=int, help="Primary node port", default=None)
    parser.add_argument("--cluster", help="Expected cluster name", default=None)
    parser.add_argument(
        "--other-hosts",
        dest="other_hosts",
        help="Additional nodes (comma-separated host:port)",
        default=None
    )
    parser.add_argument("--api-key", dest="api_key", help="Elasticsearch API key", default=None)
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("indices", help="List all indices")

    create_parser = subparsers.add_parser("create", help="Create an index")
    create_parser.add_argument("index", help="Index name")

    delete_parser = subparsers.add_parser("delete", help="Delete an index")
    delete_parser.add_argument("index", help="Index name")
    delete_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    for name, help_text in (("get", "Print a document"), ("remove", "Delete a document")):
        doc_parser = subparsers.add_parser(name, help=help_text)
        doc_parser.add_argument("index", help="Index name")
        doc_parser.add_argument("type", help="Document type")
        doc_parser.add_argument("id", help="Document id")

    put_parser = subparsers.add_parser("put", help="Create or replace a document")
    put_parser.add_argument("index", help="Index name")
    put_parser.add_argument("type", help="Document type")
    put_parser.add_argument("id", help="Document id")
    put_parser.add_argument("document", help="Document as JSON text")

    search_parser = subparsers.add_parser("search", help="Search an index")
    search_parser.add_argument("index", help="Index name")
    search_parser.add_argument("query", help="Search body as JSON text")
    search_parser.add_argument("--type", help="Document type", default=None)
    search_parser.add_argument("--limit", type=int, help="Max documents to print")
    search_parser.add_argument("--page-size", dest="page_size", type=int, help="Hits per page")
    search_parser.add_argument("--facet", action="append", help="Aggregation to print (repeatable)")

    load_parser = subparsers.add_parser("load", help="Bulk index a JSONL file")
    load_parser.add_argument("index", help="Index name")
    load_parser.add_argument("type", help="Document type")
    load_parser.add_argument("file", help="JSONL file")
    load_parser.add_argument("--id-field", dest="id_field", help="Field holding the document id")
    load_parser.add_argument("--sync", action="store_true", help="Wait for each bulk request")

    mapping_parser = subparsers.add_parser("mapping", help="Type mappings")
    mapping_parser.add_argument("action", choices=["get", "put"])
    mapping_parser.add_argument("index", help="Index name")
    mapping_parser.add_argument("type", help="Document type")
    mapping_parser.add_argument("file", nargs="?", help="Mapping JSON file (for put)")

    refresh_parser = subparsers.add_parser("refresh", help="Refresh an index")
    refresh_parser.add_argument("index", help="Index name")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 2

    session = get_session(args)
    try:
        command(session, args)
    except ElasticDocsError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
