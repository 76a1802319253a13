"""
Filter fingerprinting for docbridge logs.

Store failures are logged with enough information to correlate them without
writing filter values (which may hold user data) to the log:

1. Query Hashing (hash_query):
   - Deterministic MD5 hash of the filter, projection and sort
   - Normalizes datetimes to ISO format, ObjectIds to strings
   - Recursively sorts dict keys, so equal filters hash identically

2. Filter Shape (filter_shape):
   - The filter with every operand replaced by "?"
   - Keeps field names and operators, drops values

Usage:
    fingerprint = hash_query({"score": {"$gte": 10}})
    shape = filter_shape({"score": {"$gte": 10}})   # {"score": {"$gte": "?"}}
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId


def _normalize_value(obj):
    """
    Recursively normalize query values for deterministic hashing.

    Converts datetimes to ISO strings, ObjectIds to strings,
    and sorts dict keys to ensure same query always hashes identically.
    """
    if isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: _normalize_value(v) for k, v in sorted(obj.items())}
    elif isinstance(obj, (list, tuple)):
        return [_normalize_value(v) for v in obj]
    return obj


def hash_query(
    filter_dict: Optional[Dict[str, Any]],
    projection: Optional[Any] = None,
    sort: Optional[Any] = None,
) -> str:
    """
    Create deterministic hash of query parameters.

    Args:
        filter_dict: Filter dictionary (rich or native)
        projection: Requested keys
        sort: Sort specification

    Returns:
        Hex string hash (32 characters)

    Example:
        >>> hash_query({"score": {"$gte": 10}}) == hash_query({"score": {"$gte": 10}})
        True
    """
    query_repr = {
        "filter": _normalize_value(filter_dict or {}),
    }

    if projection:
        query_repr["projection"] = _normalize_value(projection)

    if sort:
        query_repr["sort"] = _normalize_value(sort)

    # default=str covers values json cannot encode (Decimal, bytes, ...)
    json_str = json.dumps(query_repr, sort_keys=True, separators=(",", ":"), default=str)

    return hashlib.md5(json_str.encode("utf-8")).hexdigest()


def filter_shape(filter_dict: Any) -> Any:
    """
    Replace every operand with ``"?"``, keeping structure.

    Examples:
        >>> filter_shape({"$or": [{"a": 1}, {"b": {"$in": [1, 2]}}]})
        {'$or': [{'a': '?'}, {'b': {'$in': '?'}}]}
    """
    if not isinstance(filter_dict, dict):
        return "?"
    shape = {}
    for key, value in filter_dict.items():
        if key in ("$and", "$or") and isinstance(value, list):
            shape[key] = [filter_shape(item) for item in value]
        elif key == "$query" or (not key.startswith("$") and isinstance(value, dict)):
            shape[key] = filter_shape(value)
        else:
            shape[key] = "?"
    return shape
