"""
elasticdocs Session — Connection Lifecycle and One-Shot Operations
==================================================================

A Session owns the single Elasticsearch client for a cluster. The client is
created on first use and probed once; cursors and batch writers created by
the session borrow it through the session and never hold it themselves.

Schema changes (index creation and deletion) force a reconnect: every batch
writer is flushed, every cursor drops its unread page, the old client is
closed and a fresh one is probed, so nothing keeps working against stale
cluster metadata.

Sub-collections ("types") are stored as a keyword field on each document
(`SessionConfig.type_field`); the raw mapping definition of each type is kept
in the index mapping's `_meta` section.
"""

import dataclasses
import json
import logging
import threading
import weakref
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Set, Union

from elasticsearch import Elasticsearch
from elasticsearch import NotFoundError as ESNotFoundError

from .batch import BatchWriter
from .config import SessionConfig
from .cursor import SearchCursor
from .errors import (
    DocumentNotFoundError,
    ElasticDocsError,
    IndexNotFoundError,
    ServerUnavailableError,
    TypeNotDefinedError,
    remote_call,
)
from .query import load_json, scope_to_type, type_filter

logger = logging.getLogger(__name__)

TYPES_META_KEY = "elasticdocs_types"

Dependent = Union[SearchCursor, BatchWriter]


def _body(response: Any) -> Any:
    """Plain body of a client response (ObjectApiResponse or dict)."""
    return getattr(response, "body", response)


class Session:
    """
    Client session for one Elasticsearch cluster.

    Example:
        with Session("es1", 9200, "production") as session:
            session.add_other_host("es2", 9200)
            session.create_index("orders")
            session.put_document("orders", "order", "1", {"total": 10})
            for doc in session.get_documents("orders", {"query": {"match_all": {}}}):
                print(doc)
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        cluster: Optional[str] = None,
        config: Optional[SessionConfig] = None,
    ):
        """
        Create a session. Nothing is contacted until the first operation.

        Args:
            host: Primary node host (overrides config)
            port: Primary node port (overrides config)
            cluster: Expected cluster name (overrides config)
            config: Full settings; defaults to SessionConfig()
        """
        config = dataclasses.replace(config) if config else SessionConfig()
        config.other_hosts = list(config.other_hosts)
        if host is not None:
            config.host = host
        if port is not None:
            config.port = port
        if cluster is not None:
            config.cluster = cluster
        self.config = config

        self._client: Optional[Elasticsearch] = None
        self._lock = threading.RLock()

        self._writers: List[BatchWriter] = []
        self._cursors: "weakref.WeakSet[SearchCursor]" = weakref.WeakSet()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._inflight: Set[Future] = set()
        self._inflight_lock = threading.Lock()

    @classmethod
    def local(cls) -> "Session":
        """Session for the default cluster on this machine."""
        return cls(config=SessionConfig.local())

    @classmethod
    def from_config(cls, config: SessionConfig) -> "Session":
        return cls(config=config)

    @property
    def lock(self) -> threading.RLock:
        """Guard for every read-or-replace of the shared client."""
        return self._lock

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def dependents(self) -> List[Dependent]:
        with self._lock:
            return list(self._writers) + list(self._cursors)

    def add_other_host(self, host: str, port: int) -> None:
        """Add another node of the cluster; used from the next connect()."""
        with self._lock:
            self.config.other_hosts.append((host, port))

    # Connection lifecycle

    def connect(self) -> Elasticsearch:
        """Create the client from the configured nodes unless one exists."""
        with self._lock:
            if self._client is None:
                logger.info(
                    "Creating Elasticsearch client | cluster=%s nodes=%d",
                    self.config.cluster,
                    1 + len(self.config.other_hosts),
                )
                self._client = Elasticsearch(**self.config.client_kwargs())
            return self._client

    def get_connection(self) -> Elasticsearch:
        """
        Return the live client, connecting and probing the cluster if needed.

        Raises:
            ServerUnavailableError: No node answered the probe, or the answer
                came from a different cluster
        """
        with self._lock:
            if self._client is not None:
                return self._client

            client = self.connect()
            try:
                self._probe(client)
            except ServerUnavailableError:
                self._client = None
                client.close()
                raise
            return client

    def _probe(self, client: Elasticsearch) -> None:
        try:
            with remote_call("cluster state probe"):
                health = _body(client.cluster.health())
        except ServerUnavailableError:
            raise
        except Exception as e:
            logger.warning("Cluster probe failed, continuing: %s", e, exc_info=True)
            return

        name = health.get("cluster_name")
        if name and self.config.cluster and name != self.config.cluster:
            raise ServerUnavailableError(
                f"node belongs to cluster '{name}', expected '{self.config.cluster}'"
            )
        logger.info("Connected | cluster=%s status=%s", name, health.get("status"))

    def reconnect(self) -> Elasticsearch:
        """
        Flush writers, invalidate cursors, then replace the client.

        Returns:
            The new, probed client
        """
        with self._lock:
            if self._client is not None:
                logger.info("Reconnecting | cluster=%s", self.config.cluster)
                self._release_dependents(close=False)
                self._wait_for_flushes()
                self._client.close()
                self._client = None
            return self.get_connection()

    def close(self) -> None:
        """Close every writer and cursor created here, then the client."""
        with self._lock:
            self._release_dependents(close=True)
            self._wait_for_flushes()

            with self._inflight_lock:
                executor, self._executor = self._executor, None
            if executor is not None:
                executor.shutdown(wait=True)

            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info("Session closed | cluster=%s", self.config.cluster)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Dependent registry

    def register(self, dependent: Dependent) -> None:
        with self._lock:
            if isinstance(dependent, SearchCursor):
                self._cursors.add(dependent)
            elif dependent not in self._writers:
                self._writers.append(dependent)

    def deregister(self, dependent: Dependent) -> None:
        with self._lock:
            if isinstance(dependent, SearchCursor):
                self._cursors.discard(dependent)
            elif dependent in self._writers:
                self._writers.remove(dependent)

    def _release_dependents(self, close: bool) -> None:
        # caller holds self._lock
        for writer in list(self._writers):
            try:
                if close:
                    writer.close()
                else:
                    writer.flush()
            except ElasticDocsError as e:
                logger.warning("Flushing batch writer failed: %s", e)
        for cursor in list(self._cursors):
            cursor.invalidate()

    def submit_flush(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run an asynchronous bulk flush on the session's flush threads."""
        with self._inflight_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.flush_workers,
                    thread_name_prefix="elasticdocs-flush",
                )
            future = self._executor.submit(fn, *args)
            self._inflight.add(future)
        future.add_done_callback(self._flush_done)
        return future

    def _flush_done(self, future: Future) -> None:
        with self._inflight_lock:
            self._inflight.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Asynchronous bulk flush crashed", exc_info=future.exception())

    def _wait_for_flushes(self) -> None:
        with self._inflight_lock:
            pending = list(self._inflight)
        if pending:
            logger.debug("Waiting for %d asynchronous flushes", len(pending))
            wait(pending)

    # Factories

    def get_documents(
        self,
        index: str,
        query: Any,
        doc_type: Optional[str] = None,
        page_size: Optional[int] = None,
        on_error: str = "exhaust",
    ) -> SearchCursor:
        """
        Cursor over every document of `index` (and `doc_type`) matching `query`.

        Args:
            index: Index to search
            query: Search body as dict, JSON text or readable stream
            doc_type: Optional type restriction
            page_size: Hits per page (default from config)
            on_error: "exhaust" to stop iterating on a failed page, "raise" to
                raise the failure

        Raises:
            DecodeError: If the query is not a JSON object
        """
        cursor = SearchCursor(
            self,
            index,
            load_json(query, what="query"),
            doc_type=doc_type,
            page_size=page_size or self.config.page_size,
            on_error=on_error,
        )
        self.register(cursor)
        return cursor

    def get_document_set(self, sync: bool = False, on_error: str = "drop") -> BatchWriter:
        """
        New batch writer for bulk indexing.

        Args:
            sync: Wait for each bulk request to be acknowledged
            on_error: "drop" to log failed batches, "raise" to raise them
        """
        writer = BatchWriter(
            self,
            sync=sync,
            max_count=self.config.bulk_max_count,
            max_size=self.config.bulk_max_size,
            on_error=on_error,
        )
        self.register(writer)
        return writer

    # Index administration

    def index_exists(self, name: str) -> bool:
        client = self.get_connection()
        with remote_call("index exists"):
            return bool(client.indices.exists(index=name))

    def get_indexes(self) -> List[str]:
        """Names of all indices in the cluster metadata."""
        client = self.get_connection()
        with remote_call("cluster state"):
            state = _body(client.cluster.state(metric="metadata"))
        return sorted(state["metadata"]["indices"].keys())

    def create_index(self, name: str, body: Optional[Dict[str, Any]] = None) -> bool:
        """
        Create an index unless it already exists, then reconnect.

        Returns:
            True if the index was created, False if it already existed
        """
        if self.index_exists(name):
            logger.info("Index already exists: %s", name)
            return False

        client = self.get_connection()
        kwargs: Dict[str, Any] = {"index": name}
        if body:
            kwargs["body"] = body
        with remote_call("create index"):
            client.indices.create(**kwargs)
        logger.info("Created index: %s", name)

        self.reconnect()
        return True

    def delete_index(self, name: str) -> bool:
        """
        Delete an index if it exists, then reconnect.

        Returns:
            True if the index was deleted, False if it was already absent
        """
        if not self.index_exists(name):
            logger.info("Index already absent: %s", name)
            return False

        client = self.get_connection()
        with remote_call("delete index"):
            client.indices.delete(index=name)
        logger.info("Deleted index: %s", name)

        self.reconnect()
        return True

    def refresh(self, index: str) -> None:
        """Make recent writes to `index` visible to search."""
        client = self.get_connection()
        with remote_call("refresh"):
            client.indices.refresh(index=index)

    # Type mappings

    def _index_meta(self, client: Elasticsearch, index: str) -> Dict[str, Any]:
        with remote_call("get mapping"):
            try:
                response = _body(client.indices.get_mapping(index=index))
            except ESNotFoundError as e:
                raise IndexNotFoundError(index) from e

        entry = response.get(index) or next(iter(response.values()), None)
        if entry is None:
            raise IndexNotFoundError(index)
        return dict(entry.get("mappings", {}).get("_meta", {}))

    def _types(self, client: Elasticsearch, index: str) -> Dict[str, Any]:
        return dict(self._index_meta(client, index).get(TYPES_META_KEY, {}))

    def put_mapping(self, index: str, doc_type: str, mapping: Any) -> None:
        """
        Define the mapping of `doc_type` in `index`.

        Args:
            index: Existing index
            doc_type: Type name
            mapping: dict, JSON text or stream; either {"properties": ...} or
                {doc_type: {"properties": ...}}

        Raises:
            DecodeError: If the definition is malformed
            IndexNotFoundError: If the index does not exist
        """
        definition = load_json(mapping, what=f"mapping for type '{doc_type}'")
        if list(definition) == [doc_type] and isinstance(definition[doc_type], dict):
            definition = definition[doc_type]

        client = self.get_connection()
        meta = self._index_meta(client, index)
        types = dict(meta.get(TYPES_META_KEY, {}))
        types[doc_type] = definition
        meta[TYPES_META_KEY] = types

        properties = dict(definition.get("properties", {}))
        properties[self.config.type_field] = {"type": "keyword"}

        with remote_call("put mapping"):
            client.indices.put_mapping(index=index, body={"properties": properties, "_meta": meta})
        logger.info("Put mapping | index=%s type=%s", index, doc_type)

    def get_mapping(self, index: str, doc_type: str) -> str:
        """
        JSON text of the mapping defined for `doc_type`.

        Raises:
            IndexNotFoundError: If the index does not exist
            TypeNotDefinedError: If no mapping was put for the type
        """
        types = self._types(self.get_connection(), index)
        if doc_type not in types:
            raise TypeNotDefinedError(index, doc_type)
        return json.dumps(types[doc_type])

    def type_exists(self, index: str, doc_type: str) -> bool:
        """
        Raises:
            IndexNotFoundError: If the index does not exist
        """
        return doc_type in self._types(self.get_connection(), index)

    def delete_type(self, index: str, doc_type: str) -> bool:
        """
        Remove a type's documents and its mapping record.

        Returns:
            False when the index or the type did not exist
        """
        if not self.index_exists(index):
            return False
        try:
            if not self.type_exists(index, doc_type):
                return False
        except IndexNotFoundError:
            return False

        client = self.get_connection()
        with remote_call("delete type documents"):
            client.delete_by_query(
                index=index,
                body={"query": type_filter(self.config.type_field, doc_type)},
                conflicts="proceed",
            )

        meta = self._index_meta(client, index)
        types = dict(meta.get(TYPES_META_KEY, {}))
        types.pop(doc_type, None)
        meta[TYPES_META_KEY] = types
        with remote_call("put mapping"):
            client.indices.put_mapping(index=index, body={"_meta": meta})

        logger.info("Deleted type | index=%s type=%s", index, doc_type)
        return True

    # Documents

    def _stamp(self, doc_type: Optional[str], document: Any, doc_id: str) -> Dict[str, Any]:
        source = load_json(document, what=f"document '{doc_id}'")
        if doc_type:
            source[self.config.type_field] = doc_type
        return source

    def _not_found(self, e: ESNotFoundError, index: str, doc_type: Optional[str], doc_id: str) -> ElasticDocsError:
        if getattr(e, "error", None) == "index_not_found_exception":
            return IndexNotFoundError(index)
        return DocumentNotFoundError(index, doc_type, doc_id)

    def get_document(self, index: str, doc_type: Optional[str], doc_id: str) -> str:
        """
        JSON text of one document.

        Raises:
            DocumentNotFoundError: If there is no such document of that type
            IndexNotFoundError: If the index does not exist
        """
        client = self.get_connection()
        with remote_call("get document"):
            try:
                response = _body(client.get(index=index, id=doc_id))
            except ESNotFoundError as e:
                raise self._not_found(e, index, doc_type, doc_id) from e

        if not response.get("found", False):
            raise DocumentNotFoundError(index, doc_type, doc_id)

        source = response.get("_source", {})
        if doc_type and source.get(self.config.type_field) != doc_type:
            raise DocumentNotFoundError(index, doc_type, doc_id)
        return json.dumps(source)

    def put_document(self, index: str, doc_type: Optional[str], doc_id: str, document: Any) -> Dict[str, Any]:
        """Create or replace one document and wait for the acknowledgement."""
        source = self._stamp(doc_type, document, doc_id)
        client = self.get_connection()
        with remote_call("index document"):
            return _body(client.index(index=index, id=doc_id, document=source))

    def delete_document(self, index: str, doc_type: Optional[str], doc_id: str) -> Dict[str, Any]:
        """
        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        client = self.get_connection()
        with remote_call("delete document"):
            try:
                return _body(client.delete(index=index, id=doc_id))
            except ESNotFoundError as e:
                raise self._not_found(e, index, doc_type, doc_id) from e

    def delete_documents(self, index: str, doc_type: Optional[str], query: Any) -> Dict[str, Any]:
        """
        Delete every document of `doc_type` matching `query`.

        `query` is either a full body ({"query": ...}) or the query clause.
        """
        parsed = load_json(query, what="query")
        clause = parsed["query"] if "query" in parsed else parsed
        body = scope_to_type({"query": clause}, self.config.type_field, doc_type)

        client = self.get_connection()
        with remote_call("delete by query"):
            return _body(client.delete_by_query(index=index, body=body))

    def perform_query(self, body: Dict[str, Any], index: str, doc_type: Optional[str] = None) -> Dict[str, Any]:
        """Run one search request and return the response body."""
        request = scope_to_type(body, self.config.type_field, doc_type)
        client = self.get_connection()
        with remote_call("search"):
            return _body(client.search(index=index, body=request, search_type="dfs_query_then_fetch"))
