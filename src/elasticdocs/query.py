"""
elasticdocs Query — Request Body Helpers
========================================

Pure functions that derive request bodies from a caller's query. A query
handed to a cursor is never modified; each page gets its own body.
"""

import copy
import json
from typing import Any, Dict, Mapping, Optional

from .errors import DecodeError


def load_json(source: Any, what: str = "payload") -> Dict[str, Any]:
    """
    Decode a JSON object from a mapping, text, bytes or readable stream.

    Args:
        source: dict-like, JSON str/bytes, or an object with read()
        what: Description used in error messages

    Returns:
        A new dict (mappings are deep-copied)

    Raises:
        DecodeError: If the input is not a well-formed JSON object
    """
    if isinstance(source, Mapping):
        return copy.deepcopy(dict(source))

    if hasattr(source, "read"):
        source = source.read()

    if isinstance(source, (bytes, bytearray)):
        try:
            source = source.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"{what} is not valid UTF-8: {e}") from e

    if not isinstance(source, str):
        raise DecodeError(f"{what} must be a JSON object, got {type(source).__name__}")

    try:
        value = json.loads(source)
    except json.JSONDecodeError as e:
        raise DecodeError(f"{what} is not well-formed JSON: {e}") from e

    if not isinstance(value, dict):
        raise DecodeError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


def page_request(query: Mapping[str, Any], offset: int, size: int) -> Dict[str, Any]:
    """Body for one page of `query`, starting at `offset`."""
    body = dict(query)
    body["from"] = offset
    body["size"] = size
    body["version"] = True
    body["track_total_hits"] = True
    return body


def type_filter(type_field: str, doc_type: str) -> Dict[str, Any]:
    return {"term": {type_field: doc_type}}


def scope_to_type(body: Mapping[str, Any], type_field: str, doc_type: Optional[str]) -> Dict[str, Any]:
    """
    Restrict a search body to one document type.

    The body's query (match_all when absent) becomes the `must` clause of a
    bool query filtered on the type field.
    """
    scoped = dict(body)
    if not doc_type:
        return scoped

    scoped["query"] = {
        "bool": {
            "must": [body.get("query", {"match_all": {}})],
            "filter": [type_filter(type_field, doc_type)],
        }
    }
    return scoped


def hits_total(hits: Mapping[str, Any]) -> int:
    """hits.total is an int on old clusters and {"value": n} on newer ones."""
    total = hits.get("total", 0)
    if isinstance(total, Mapping):
        return int(total.get("value", 0))
    return int(total or 0)
