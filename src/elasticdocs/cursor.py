"""
elasticdocs Cursor — Paged Search Results
=========================================

A SearchCursor turns one query into a forward-only stream of hits. Pages are
requested lazily with from/size paging; the aggregations returned with the
last page are kept aside for facet().

State machine:
    not started → paging → (unread hits ⇄ paging) → exhausted

Exhausted is reached only when a page comes back empty. A failed page fetch
is reported as a PageResult with status ERROR; what iteration does with it
depends on the cursor's on_error policy ("exhaust" or "raise").
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional

from .errors import DecodeError, ElasticDocsError
from .query import hits_total, page_request

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

ON_ERROR_POLICIES = ("exhaust", "raise")


class PageStatus(Enum):
    OK = "ok"
    EXHAUSTED = "exhausted"
    ERROR = "error"


@dataclass(frozen=True)
class PageResult:
    """Outcome of one page fetch."""

    status: PageStatus
    hits: List[Dict[str, Any]] = field(default_factory=list)
    total: Optional[int] = None
    aggregations: Optional[Dict[str, Any]] = None
    error: Optional[ElasticDocsError] = None


class SearchCursor:
    """
    Lazily paged iterator over the hits of one query.

    Create cursors through Session.get_documents() rather than directly.

    Example:
        cursor = session.get_documents("orders", {"query": {"match_all": {}}})
        print(cursor.total_hits())
        for doc in cursor:
            handle(doc)
    """

    def __init__(
        self,
        session: "Session",
        index: str,
        query: Mapping[str, Any],
        doc_type: Optional[str] = None,
        page_size: int = 2000,
        on_error: str = "exhaust",
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        if on_error not in ON_ERROR_POLICIES:
            raise ValueError(f"on_error must be one of {ON_ERROR_POLICIES}")

        self._session = session
        self.index = index
        self.doc_type = doc_type
        self._query = dict(query)
        self._page_size = page_size
        self.on_error = on_error

        self._hits: List[Dict[str, Any]] = []
        self._next = 0
        self._end_of_results = False
        self._offset = 0
        self._total = 0
        self._aggregations: Optional[Dict[str, Any]] = None
        self._fetched = False
        self._last_error: Optional[ElasticDocsError] = None

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def offset(self) -> int:
        """Number of hits fetched so far across all pages."""
        return self._offset

    @property
    def end_of_results(self) -> bool:
        return self._end_of_results

    @property
    def last_error(self) -> Optional[ElasticDocsError]:
        return self._last_error

    def fetch_page(self) -> PageResult:
        """
        Request the page starting at the current offset.

        Never raises: a failure leaves the cursor untouched and is returned as
        PageStatus.ERROR (and kept in last_error).
        """
        body = page_request(self._query, self._offset, self._page_size)
        try:
            response = self._session.perform_query(body, self.index, self.doc_type)
            hits_section = response["hits"]
            hits = list(hits_section["hits"])
            total = hits_total(hits_section)
        except ElasticDocsError as e:
            self._last_error = e
            logger.warning("Page fetch failed | index=%s offset=%d: %s", self.index, self._offset, e)
            return PageResult(PageStatus.ERROR, error=e)
        except (KeyError, TypeError) as e:
            err = DecodeError(f"malformed search response: {e}")
            self._last_error = err
            logger.warning("Page fetch failed | index=%s offset=%d: %s", self.index, self._offset, err)
            return PageResult(PageStatus.ERROR, error=err)

        aggregations = response.get("aggregations")
        if aggregations is None:
            aggregations = response.get("facets")

        self._hits = hits
        self._next = 0
        self._total = total
        self._aggregations = aggregations
        self._offset += len(hits)
        self._fetched = True
        self._last_error = None
        if not hits:
            self._end_of_results = True

        logger.debug(
            "Fetched page | index=%s hits=%d offset=%d total=%d",
            self.index, len(hits), self._offset, total,
        )
        status = PageStatus.OK if hits else PageStatus.EXHAUSTED
        return PageResult(status, hits=hits, total=total, aggregations=aggregations)

    def has_next(self) -> bool:
        """True if another hit can be returned, fetching a page if needed."""
        if self._next < len(self._hits):
            return True
        if self._end_of_results:
            return False

        result = self.fetch_page()
        if result.status is PageStatus.ERROR:
            if self.on_error == "raise":
                raise result.error
            return False
        return self._next < len(self._hits)

    def next_hit(self) -> Optional[Dict[str, Any]]:
        """The next raw hit (with _id, _version and _source), or None."""
        if not self.has_next():
            return None
        hit = self._hits[self._next]
        self._next += 1
        return hit

    def next(self) -> Optional[str]:
        """JSON text of the next document, or None once exhausted."""
        hit = self.next_hit()
        if hit is None:
            return None
        source = hit.get("_source", {})
        if isinstance(source, str):
            return source
        return json.dumps(source)

    def next_parsed(self) -> Optional[Dict[str, Any]]:
        """The next document decoded into a dict, or None once exhausted."""
        raw = self.next()
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise DecodeError(f"result from index '{self.index}' is not well-formed JSON: {e}") from e

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return self

    def __next__(self) -> Dict[str, Any]:
        doc = self.next_parsed()
        if doc is None:
            raise StopIteration
        return doc

    def _ensure_fetched(self) -> None:
        if self._fetched:
            return
        result = self.fetch_page()
        if result.status is PageStatus.ERROR:
            raise result.error

    def total_hits(self) -> int:
        """Total number of matches reported by the last page fetch."""
        self._ensure_fetched()
        return self._total

    def facet(self, name: str) -> Dict[str, Any]:
        """
        Named aggregation from the last page response.

        Returns an empty dict when the query produced no aggregation data.
        A page is fetched only when none has been fetched yet, not whenever
        the aggregations are missing, so asking for a facet the query does
        not define never consumes a page.
        """
        self._ensure_fetched()
        if not self._aggregations:
            return {}
        return self._aggregations.get(name, {})

    def invalidate(self) -> None:
        """Drop the unread part of the current page."""
        if self._next < len(self._hits):
            logger.debug(
                "Discarding %d unread hits | index=%s", len(self._hits) - self._next, self.index
            )
        self._hits = []
        self._next = 0
