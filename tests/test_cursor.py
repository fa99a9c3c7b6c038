import json

import pytest
from unittest.mock import MagicMock

from elasticsearch import ApiError
from elasticsearch import ConnectionError as ESConnectionError

from elasticdocs import DecodeError, PageStatus, RemoteOperationError, ServerUnavailableError
from elasticdocs.cursor import SearchCursor

from conftest import search_response


MATCH_ALL = {"query": {"match_all": {}}}


def paged_search(docs, aggregations=None, sizes=None):
    """client.search stand-in serving `docs` by from/size."""
    def search(index, body, search_type):
        start, size = body["from"], body["size"]
        page = docs[start:start + size]
        if sizes is not None:
            sizes.append(len(page))
        return search_response(page, total=len(docs), aggregations=aggregations)
    return search


def orders(n):
    return [{"order": i} for i in range(n)]


def test_scenario_4500_orders_in_pages_of_2000(session, client):
    sizes = []
    client.search.side_effect = paged_search(orders(4500), sizes=sizes)

    cursor = session.get_documents("orders", '{"query": {"match_all": {}}}')
    assert cursor.page_size == 2000
    assert cursor.total_hits() == 4500
    assert sizes == [2000]

    seen = [cursor.next_parsed() for _ in range(4500)]

    assert seen == orders(4500)
    assert cursor.next() is None
    assert cursor.next_parsed() is None
    assert sizes == [2000, 2000, 500, 0]
    assert cursor.total_hits() == 4500


@pytest.mark.parametrize("n, page_size", [(0, 3), (1, 3), (6, 3), (7, 3), (10, 4)])
def test_iteration_returns_every_item_once(session, client, n, page_size):
    client.search.side_effect = paged_search(orders(n))

    cursor = session.get_documents("orders", MATCH_ALL, page_size=page_size)

    assert list(cursor) == orders(n)
    assert cursor.has_next() is False
    assert cursor.end_of_results is True


def test_offset_tracks_returned_hits(session, client):
    client.search.side_effect = paged_search(orders(5))
    cursor = session.get_documents("orders", MATCH_ALL, page_size=2)

    results = [cursor.fetch_page() for _ in range(4)]

    assert [len(r.hits) for r in results] == [2, 2, 1, 0]
    assert [r.status for r in results] == [PageStatus.OK] * 3 + [PageStatus.EXHAUSTED]
    assert cursor.offset == 5
    assert cursor.end_of_results is True


def test_page_requests_carry_paging_fields(session, client):
    query = {"query": {"term": {"status": "open"}}}
    client.search.side_effect = paged_search(orders(3))

    cursor = session.get_documents("orders", query, doc_type="order", page_size=2)
    list(cursor)

    bodies = [c.kwargs["body"] for c in client.search.call_args_list]
    assert [(b["from"], b["size"]) for b in bodies] == [(0, 2), (2, 2), (3, 2)]
    assert all(b["version"] is True for b in bodies)
    assert bodies[0]["query"] == {
        "bool": {
            "must": [{"term": {"status": "open"}}],
            "filter": [{"term": {"doc_type": "order"}}],
        }
    }
    assert query == {"query": {"term": {"status": "open"}}}


def test_next_returns_raw_json_and_next_hit_returns_hit(session, client):
    client.search.side_effect = paged_search(orders(2))
    cursor = session.get_documents("orders", MATCH_ALL)

    hit = cursor.next_hit()
    assert hit["_version"] == 1
    assert hit["_source"] == {"order": 0}
    assert json.loads(cursor.next()) == {"order": 1}
    assert cursor.next_hit() is None


def test_next_parsed_malformed_payload(session, client):
    client.search.return_value = {"hits": {"total": 1, "hits": [{"_id": "1", "_source": "{broken"}]}}
    cursor = session.get_documents("orders", MATCH_ALL)

    assert cursor.has_next() is True
    with pytest.raises(DecodeError):
        cursor.next_parsed()


def test_failed_page_ends_iteration_by_default(session, client):
    client.search.side_effect = ApiError("boom", MagicMock(status=500), {})
    cursor = session.get_documents("orders", MATCH_ALL)

    assert cursor.has_next() is False
    assert cursor.next() is None
    assert cursor.end_of_results is False
    assert isinstance(cursor.last_error, RemoteOperationError)


def test_failed_page_can_be_retried(session, client):
    client.search.side_effect = [
        ESConnectionError("refused"),
        search_response([{"order": 1}]),
    ]
    cursor = session.get_documents("orders", MATCH_ALL)

    result = cursor.fetch_page()
    assert result.status is PageStatus.ERROR
    assert isinstance(result.error, ServerUnavailableError)
    assert cursor.offset == 0

    assert cursor.next_parsed() == {"order": 1}
    assert cursor.last_error is None


def test_raise_policy(session, client):
    client.search.side_effect = ApiError("boom", MagicMock(status=500), {})
    cursor = session.get_documents("orders", MATCH_ALL, on_error="raise")

    with pytest.raises(RemoteOperationError):
        cursor.has_next()


def test_total_hits_surfaces_fetch_failure(session, client):
    client.search.side_effect = ESConnectionError("refused")
    cursor = session.get_documents("orders", MATCH_ALL)

    with pytest.raises(ServerUnavailableError):
        cursor.total_hits()


def test_malformed_response_is_a_page_error(session, client):
    client.search.return_value = {"unexpected": True}
    cursor = session.get_documents("orders", MATCH_ALL)

    assert cursor.fetch_page().status is PageStatus.ERROR
    assert isinstance(cursor.last_error, DecodeError)


def test_facet(session, client):
    aggregations = {"by_status": {"buckets": [{"key": "open", "doc_count": 3}]}}
    client.search.side_effect = paged_search(orders(3), aggregations=aggregations)
    cursor = session.get_documents("orders", MATCH_ALL)

    assert cursor.facet("by_status") == aggregations["by_status"]
    assert cursor.facet("missing") == {}
    assert client.search.call_count == 1
    assert len(list(cursor)) == 3


def test_facet_without_aggregations(session, client):
    client.search.side_effect = paged_search(orders(2))
    cursor = session.get_documents("orders", MATCH_ALL)

    assert cursor.facet("by_status") == {}
    assert cursor.facet("by_status") == {}
    assert client.search.call_count == 1


def test_invalidate_discards_unread_page(session, client):
    client.search.side_effect = paged_search(orders(4))
    cursor = session.get_documents("orders", MATCH_ALL, page_size=2)
    assert cursor.next_parsed() == {"order": 0}

    cursor.invalidate()

    assert cursor.next_parsed() == {"order": 2}
    assert cursor.offset == 4


def test_invalid_arguments(session):
    with pytest.raises(ValueError):
        SearchCursor(session, "orders", MATCH_ALL, page_size=0)
    with pytest.raises(ValueError):
        SearchCursor(session, "orders", MATCH_ALL, on_error="ignore")
