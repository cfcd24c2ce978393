"""
Cache key derivation for proxied Open-Meteo requests.
"""
import hashlib
import json
from typing import Dict, Iterable, List, Mapping, Tuple, Union

QueryValue = Union[str, List[str]]


def query_mapping(items: Iterable[Tuple[str, str]]) -> Dict[str, QueryValue]:
    """
    Build a query mapping from ordered (name, value) pairs.

    A parameter seen once maps to its value. A parameter seen more than once
    maps to the list of all its values, in the order they appeared.
    """
    mapping: Dict[str, QueryValue] = {}
    for name, value in items:
        if name not in mapping:
            mapping[name] = value
        elif isinstance(mapping[name], list):
            mapping[name].append(value)
        else:
            mapping[name] = [mapping[name], value]
    return mapping


def canonical_request(endpoint: str, params: Mapping[str, QueryValue]) -> str:
    """Canonical text for a request: path, ':' and key-sorted compact JSON."""
    sorted_params = {key: params[key] for key in sorted(params)}
    serialized = json.dumps(sorted_params, separators=(",", ":"), ensure_ascii=False)
    return f"{endpoint}:{serialized}"


def derive_cache_key(endpoint: str, params: Mapping[str, QueryValue]) -> str:
    """
    Derive the cache key for a request.

    Parameter order in the URL does not matter; repeated values keep their
    order. Returns a 32 character lowercase hex MD5 digest.
    """
    canonical = canonical_request(endpoint, params)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()
