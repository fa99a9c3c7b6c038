import pytest
from unittest.mock import MagicMock, patch

from elasticdocs import Session, SessionConfig


def make_client(cluster="elasticsearch"):
    client = MagicMock()
    client.cluster.health.return_value = {"cluster_name": cluster, "status": "green"}
    return client


def search_response(sources, total=None, aggregations=None):
    """Search response body holding one hit per source dict."""
    hits = [
        {"_id": str(i), "_version": 1, "_source": source}
        for i, source in enumerate(sources)
    ]
    response = {
        "hits": {
            "total": {"value": len(sources) if total is None else total, "relation": "eq"},
            "hits": hits,
        }
    }
    if aggregations is not None:
        response["aggregations"] = aggregations
    return response


@pytest.fixture
def client():
    return make_client()


@pytest.fixture
def es_class(client):
    with patch("elasticdocs.session.Elasticsearch") as mock_es:
        mock_es.return_value = client
        yield mock_es


@pytest.fixture
def config():
    return SessionConfig(bulk_max_count=3, bulk_max_size=100)


@pytest.fixture
def session(es_class, config):
    session = Session(config=config)
    yield session
    session.close()
