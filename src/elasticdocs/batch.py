"""
elasticdocs Batch — Accumulating Bulk Writer
============================================

A BatchWriter collects index operations from one producer and sends them to
the cluster as a single bulk request whenever the pending count or the
pending byte size reaches its threshold, and once more on close().

Several writers may share one Session from different threads. Building the
bulk actions (and, in async mode, submitting them) happens under the
session lock; the network call does not, so a slow request from one writer
never blocks another writer's flush.

Failed flushes are not retried and the batch is not re-queued: the documents
are counted in `dropped`, the error is kept in `last_error` and logged.
"""

import json
import logging
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from elasticsearch.helpers import bulk

from .errors import BatchWriterClosedError, ElasticDocsError, remote_call
from .query import load_json

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

ON_ERROR_POLICIES = ("drop", "raise")


@dataclass(frozen=True)
class PendingWrite:
    """One queued index operation. `body` is the compact JSON sent on the wire."""

    index: str
    doc_type: Optional[str]
    doc_id: str
    source: Dict[str, Any]
    body: str

    @property
    def size(self) -> int:
        return len(self.body.encode("utf-8"))


class FlushStatus(Enum):
    EMPTY = "empty"
    OK = "ok"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass
class FlushResult:
    status: FlushStatus
    count: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[ElasticDocsError] = None


class BatchWriter:
    """
    Bulk writer bound to one Session.

    Create writers through Session.get_document_set() rather than directly.

    Example:
        with session.get_document_set(sync=True) as docs:
            for order in orders:
                docs.add("orders", "order", order["id"], order)
    """

    def __init__(
        self,
        session: "Session",
        sync: bool = False,
        max_count: int = 2000,
        max_size: int = 1_000_000,
        on_error: str = "drop",
    ):
        if on_error not in ON_ERROR_POLICIES:
            raise ValueError(f"on_error must be one of {ON_ERROR_POLICIES}")

        self._session = session
        self.sync = sync
        self.max_count = max_count
        self.max_size = max_size
        self.on_error = on_error

        self._lock = threading.Lock()
        self._pending: List[PendingWrite] = []
        self._count = 0
        self._size = 0
        self._closed = False

        self.last_error: Optional[ElasticDocsError] = None
        self.dropped = 0

    @property
    def pending_count(self) -> int:
        return self._count

    @property
    def pending_size(self) -> int:
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, index: str, doc_type: Optional[str], doc_id: str, document: Any) -> None:
        """
        Queue a document (dict or JSON text) for indexing.

        The current batch is sent first when this document would take it to
        the size threshold, and the batch including this document is sent when
        either threshold is reached.

        Raises:
            DecodeError: If a JSON text document is malformed
            BatchWriterClosedError: If the writer was closed
        """
        write = self._prepare(index, doc_type, doc_id, document)

        batches = []
        with self._lock:
            if self._closed:
                raise BatchWriterClosedError("cannot add documents to a closed batch writer")

            if self._count > 0 and self.max_size <= self._size + write.size:
                batches.append(self._take())

            self._pending.append(write)
            self._count += 1
            self._size += write.size

            if self._count >= self.max_count or self.max_size <= self._size:
                batches.append(self._take())

        error = None
        for batch in batches:
            try:
                self._send(batch)
            except ElasticDocsError as e:
                error = error or e
        if error is not None:
            raise error

    put_document = add

    def flush(self) -> FlushResult:
        """Send every pending document as one bulk request."""
        with self._lock:
            batch = self._take()
        return self._send(batch)

    def close(self) -> FlushResult:
        """Flush what is left and detach from the session. Safe to call twice."""
        with self._lock:
            already_closed = self._closed
            self._closed = True
            batch = self._take()

        try:
            return self._send(batch)
        finally:
            if not already_closed:
                self._session.deregister(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _prepare(self, index: str, doc_type: Optional[str], doc_id: str, document: Any) -> PendingWrite:
        source = load_json(document, what=f"document '{doc_id}'")
        if doc_type:
            source[self._session.config.type_field] = doc_type
        body = json.dumps(source, separators=(",", ":"), ensure_ascii=False)
        return PendingWrite(index, doc_type, str(doc_id), source, body)

    def _take(self) -> List[PendingWrite]:
        # caller holds self._lock
        batch = self._pending
        self._pending = []
        self._count = 0
        self._size = 0
        return batch

    def _send(self, batch: List[PendingWrite]) -> FlushResult:
        if not batch:
            return FlushResult(FlushStatus.EMPTY)

        try:
            with self._session.lock:
                client = self._session.get_connection()
                actions = [
                    {"_index": w.index, "_id": w.doc_id, "_source": w.source}
                    for w in batch
                ]
                if not self.sync:
                    # submitted before release so reconnect/close wait for it
                    self._session.submit_flush(self._execute, client, actions)
                    logger.debug("Submitted bulk request | docs=%d", len(actions))
                    return FlushResult(FlushStatus.SUBMITTED, count=len(actions))
        except ElasticDocsError as e:
            result = self._failed(len(batch), e)
        else:
            result = self._execute(client, actions)

        if result.status is FlushStatus.FAILED and self.on_error == "raise":
            raise result.error
        return result

    def _execute(self, client, actions: List[Dict[str, Any]]) -> FlushResult:
        try:
            with remote_call("bulk"):
                # one request per flush: the helper must not split the batch
                success, errors = bulk(
                    client,
                    actions,
                    chunk_size=len(actions),
                    max_chunk_bytes=sys.maxsize,
                    raise_on_error=False,
                )
        except ElasticDocsError as e:
            return self._failed(len(actions), e)

        if errors:
            with self._lock:
                self.dropped += len(errors)
            logger.warning("Bulk request rejected %d of %d documents", len(errors), len(actions))
        logger.debug("Bulk request done | indexed=%d failed=%d", success, len(errors))
        return FlushResult(FlushStatus.OK, count=success, errors=list(errors))

    def _failed(self, count: int, error: ElasticDocsError) -> FlushResult:
        with self._lock:
            self.last_error = error
            self.dropped += count
        logger.warning("Bulk request failed, dropped %d documents: %s", count, error)
        return FlushResult(FlushStatus.FAILED, count=count, error=error)
