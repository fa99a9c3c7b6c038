"""
elasticdocs Config — Session Settings
=====================================

All tunables of a Session live in one dataclass so the CLI, the environment
and library callers build sessions the same way.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

DEFAULT_CLUSTER = "elasticsearch"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9200
DEFAULT_PAGE_SIZE = 2000
DEFAULT_BULK_MAX_COUNT = 2000
DEFAULT_BULK_MAX_SIZE = 1_000_000


@dataclass
class SessionConfig:
    """
    Connection and batching parameters for a Session.

    Example:
        config = SessionConfig(host="es1", other_hosts=[("es2", 9200)])
        session = Session.from_config(config)
    """

    cluster: str = DEFAULT_CLUSTER
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    scheme: str = "http"
    other_hosts: List[Tuple[str, int]] = field(default_factory=list)
    api_key: Optional[str] = None
    basic_auth: Optional[Tuple[str, str]] = None
    verify_certs: bool = True
    ping_timeout: float = 30.0
    page_size: int = DEFAULT_PAGE_SIZE
    bulk_max_count: int = DEFAULT_BULK_MAX_COUNT
    bulk_max_size: int = DEFAULT_BULK_MAX_SIZE
    flush_workers: int = 4
    type_field: str = "doc_type"

    @classmethod
    def local(cls) -> "SessionConfig":
        """Settings for the default cluster on this machine."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "ELASTICDOCS_", environ: Optional[Mapping[str, str]] = None) -> "SessionConfig":
        """
        Build settings from environment variables.

        Recognised (after the prefix): HOST, PORT, SCHEME, CLUSTER, API_KEY,
        USER and PASSWORD, OTHER_HOSTS ("host:port,host:port"), PING_TIMEOUT,
        PAGE_SIZE. Missing variables keep their defaults.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(prefix + name)
            return value if value else None

        config = cls()
        config.host = get("HOST") or config.host
        config.scheme = get("SCHEME") or config.scheme
        config.cluster = get("CLUSTER") or config.cluster
        config.api_key = get("API_KEY")
        if get("PORT"):
            config.port = int(get("PORT"))
        if get("PING_TIMEOUT"):
            config.ping_timeout = float(get("PING_TIMEOUT"))
        if get("PAGE_SIZE"):
            config.page_size = int(get("PAGE_SIZE"))
        if get("USER") and get("PASSWORD"):
            config.basic_auth = (get("USER"), get("PASSWORD"))
        if get("OTHER_HOSTS"):
            config.other_hosts = parse_hosts(get("OTHER_HOSTS"), config.port)
        return config

    def node_urls(self) -> List[Dict[str, Any]]:
        """Primary node first, then the additional nodes in insertion order."""
        nodes = [(self.host, self.port)] + list(self.other_hosts)
        return [{"host": h, "port": p, "scheme": self.scheme} for h, p in nodes]

    def client_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for the Elasticsearch client constructor."""
        conn_kwargs: Dict[str, Any] = {
            "hosts": self.node_urls(),
            "verify_certs": self.verify_certs,
            "request_timeout": self.ping_timeout,
        }

        if self.api_key:
            conn_kwargs["api_key"] = self.api_key
        elif self.basic_auth:
            conn_kwargs["basic_auth"] = self.basic_auth

        return conn_kwargs


def parse_hosts(value: str, default_port: int = DEFAULT_PORT) -> List[Tuple[str, int]]:
    """Parse "host[:port],host[:port]" into (host, port) pairs."""
    hosts = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        if ":" in item:
            host, port = item.rsplit(":", 1)
            hosts.append((host, int(port)))
        else:
            hosts.append((item, default_port))
    return hosts
