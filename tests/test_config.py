from elasticdocs.config import SessionConfig, parse_hosts


def test_defaults_match_local_cluster():
    config = SessionConfig.local()

    assert config.cluster == "elasticsearch"
    assert config.host == "127.0.0.1"
    assert config.port == 9200
    assert config.page_size == 2000
    assert config.bulk_max_count == 2000
    assert config.bulk_max_size == 1_000_000


def test_node_urls_primary_first():
    config = SessionConfig(host="es1", port=9201, other_hosts=[("es2", 9202), ("es3", 9203)])

    assert config.node_urls() == [
        {"host": "es1", "port": 9201, "scheme": "http"},
        {"host": "es2", "port": 9202, "scheme": "http"},
        {"host": "es3", "port": 9203, "scheme": "http"},
    ]


def test_client_kwargs_prefers_api_key():
    config = SessionConfig(api_key="secret", basic_auth=("user", "pw"), ping_timeout=5)

    kwargs = config.client_kwargs()

    assert kwargs["api_key"] == "secret"
    assert "basic_auth" not in kwargs
    assert kwargs["request_timeout"] == 5


def test_client_kwargs_basic_auth():
    kwargs = SessionConfig(basic_auth=("user", "pw")).client_kwargs()

    assert kwargs["basic_auth"] == ("user", "pw")
    assert "api_key" not in kwargs


def test_from_env():
    environ = {
        "ELASTICDOCS_HOST": "search.internal",
        "ELASTICDOCS_PORT": "9400",
        "ELASTICDOCS_CLUSTER": "prod",
        "ELASTICDOCS_OTHER_HOSTS": "a:9401, b",
        "ELASTICDOCS_PAGE_SIZE": "500",
        "ELASTICDOCS_USER": "reader",
        "ELASTICDOCS_PASSWORD": "pw",
    }

    config = SessionConfig.from_env(environ=environ)

    assert config.host == "search.internal"
    assert config.port == 9400
    assert config.cluster == "prod"
    assert config.other_hosts == [("a", 9401), ("b", 9400)]
    assert config.page_size == 500
    assert config.basic_auth == ("reader", "pw")
    assert config.api_key is None


def test_from_env_empty_keeps_defaults():
    config = SessionConfig.from_env(environ={})

    assert config == SessionConfig()


def test_parse_hosts_skips_blanks():
    assert parse_hosts("x:1,,y", default_port=7) == [("x", 1), ("y", 7)]
