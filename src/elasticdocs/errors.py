"""
elasticdocs Errors
==================

Every failure raised by the package derives from ElasticDocsError, so callers
can branch on "does not exist" versus connectivity versus everything else
without importing the Elasticsearch client's own exception tree.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from elasticsearch import ApiError, ConnectionTimeout, TransportError
from elasticsearch import ConnectionError as ESConnectionError


class ElasticDocsError(Exception):
    """Base class for elasticdocs errors."""


class ConnectivityError(ElasticDocsError):
    """No configured node could be reached."""


class ServerUnavailableError(ConnectivityError):
    """The cluster did not answer (or answered with another cluster name)."""

    def __init__(self, message: str = "no configured node is available", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NotFoundError(ElasticDocsError):
    """Something the caller named does not exist."""


class IndexNotFoundError(NotFoundError):
    def __init__(self, index: str):
        super().__init__(f"index '{index}' does not exist")
        self.index = index


class TypeNotDefinedError(NotFoundError):
    def __init__(self, index: str, doc_type: str):
        super().__init__(f"type '{doc_type}' is not defined in index '{index}'")
        self.index = index
        self.doc_type = doc_type


class DocumentNotFoundError(NotFoundError):
    def __init__(self, index: str, doc_type: Optional[str], doc_id: str):
        super().__init__(f"document '{doc_id}' does not exist in {index}/{doc_type or '*'}")
        self.index = index
        self.doc_type = doc_type
        self.doc_id = doc_id


class DecodeError(ElasticDocsError):
    """A payload was not well-formed JSON (or not a JSON object)."""


class RemoteOperationError(ElasticDocsError):
    """Unclassified failure reported by the search engine."""

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class BatchWriterClosedError(ElasticDocsError):
    """Documents were added to a batch writer after close()."""


@contextmanager
def remote_call(operation: str) -> Iterator[None]:
    """
    Translate Elasticsearch client exceptions raised inside the block.

    Args:
        operation: Short name of the remote call, used in error messages

    Raises:
        ServerUnavailableError: The transport could not reach any node
        RemoteOperationError: Any other client or API failure
    """
    try:
        yield
    except ElasticDocsError:
        raise
    except (ESConnectionError, ConnectionTimeout) as e:
        raise ServerUnavailableError(f"{operation}: {e}", cause=e) from e
    except (ApiError, TransportError) as e:
        raise RemoteOperationError(operation, e) from e
