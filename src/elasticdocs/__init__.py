"""
elasticdocs — Session, Cursor and Bulk Writer for Elasticsearch
===============================================================

A small client-side access layer over the official Elasticsearch client:

- Session: lazily connected client for one cluster, one-shot document,
  index and mapping operations, reconnect after schema changes
- SearchCursor: pages through every hit of a query, keeping the
  aggregations of the last page at hand
- BatchWriter: accumulates documents and sends them as bulk requests when a
  count or byte-size threshold is reached

Usage:
    from elasticdocs import Session

    with Session("127.0.0.1", 9200, "elasticsearch") as session:
        session.create_index("orders")

        with session.get_document_set(sync=True) as docs:
            docs.add("orders", "order", "1", {"customer": "ada", "total": 12})

        session.refresh("orders")
        cursor = session.get_documents("orders", {"query": {"match_all": {}}})
        print(cursor.total_hits())
        for doc in cursor:
            print(doc)

License: MIT
"""

import logging

__version__ = "0.1.0"

from .batch import BatchWriter, FlushResult, FlushStatus
from .config import SessionConfig
from .cursor import PageResult, PageStatus, SearchCursor
from .errors import (
    BatchWriterClosedError,
    ConnectivityError,
    DecodeError,
    DocumentNotFoundError,
    ElasticDocsError,
    IndexNotFoundError,
    NotFoundError,
    RemoteOperationError,
    ServerUnavailableError,
    TypeNotDefinedError,
)
from .session import Session

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Session",
    "SessionConfig",
    "SearchCursor",
    "PageResult",
    "PageStatus",
    "BatchWriter",
    "FlushResult",
    "FlushStatus",
    "ElasticDocsError",
    "ConnectivityError",
    "ServerUnavailableError",
    "NotFoundError",
    "IndexNotFoundError",
    "TypeNotDefinedError",
    "DocumentNotFoundError",
    "DecodeError",
    "RemoteOperationError",
    "BatchWriterClosedError",
]
