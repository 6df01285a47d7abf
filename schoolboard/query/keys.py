"""Deterministic cache keys.

A key is an ordered sequence of segments: domain, sub-resource, parameter bag.
Segments are canonicalized to JSON so that logically-equal params build equal
keys whatever their field order, and keys survive a round trip through a
dehydrated snapshot unchanged.
"""
import json
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from schoolboard.core.constants import EntityEnum
from schoolboard.core.exceptions import InvalidKeyError


def _canonicalize(value: Any, path: str) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidKeyError(f"Non-finite number at {path}: {value!r}")
        return value
    if isinstance(value, Mapping):
        for field_name in value:
            if not isinstance(field_name, str):
                raise InvalidKeyError(f"Non-string field name at {path}: {field_name!r}")
        result = {}
        for field_name in sorted(value):
            field_value = value[field_name]
            # an unset optional filter keys the same as an omitted one
            if field_value is None:
                continue
            result[field_name] = _canonicalize(field_value, f"{path}.{field_name}")
        return result
    if isinstance(value, (list, tuple)):
        return [_canonicalize(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise InvalidKeyError(f"Unsupported value at {path}: {type(value).__name__}")


def _dump(segment: Any) -> str:
    return json.dumps(segment, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class CacheKey:
    __slots__ = ("_parts", "_hash")

    def __init__(self, parts: Tuple[str, ...]):
        self._parts = parts
        self._hash = "[" + ",".join(parts) + "]"

    @property
    def hash(self) -> str:
        return self._hash

    @property
    def domain(self) -> Optional[str]:
        return self.segment(0)

    @property
    def resource(self) -> Optional[str]:
        return self.segment(1)

    def segment(self, index: int) -> Any:
        if index >= len(self._parts):
            return None
        return json.loads(self._parts[index])

    def __len__(self) -> int:
        return len(self._parts)

    def startswith(self, prefix: "CacheKey") -> bool:
        return self._parts[:len(prefix._parts)] == prefix._parts

    def to_json(self) -> List[Any]:
        return json.loads(self._hash)

    @classmethod
    def from_json(cls, segments: Iterable[Any]) -> "CacheKey":
        return make_key(*segments)

    def __eq__(self, other) -> bool:
        return isinstance(other, CacheKey) and self._hash == other._hash

    def __hash__(self) -> int:
        return hash(self._hash)

    def __repr__(self) -> str:
        return f"CacheKey({self._hash})"


def make_key(*segments: Any) -> CacheKey:
    if not segments:
        raise InvalidKeyError("A cache key needs at least one segment")
    parts = tuple(_dump(_canonicalize(segment, f"[{i}]")) for i, segment in enumerate(segments))
    return CacheKey(parts)


def build_key(domain: str, resource: str, params: Optional[Mapping[str, Any]] = None) -> CacheKey:
    if not isinstance(domain, str) or not domain:
        raise InvalidKeyError(f"Domain must be a non-empty string, got {domain!r}")
    if not isinstance(resource, str) or not resource:
        raise InvalidKeyError(f"Resource must be a non-empty string, got {resource!r}")
    if params is not None and not isinstance(params, Mapping):
        raise InvalidKeyError(f"Params must be a mapping, got {type(params).__name__}")
    return make_key(domain, resource, dict(params or {}))


def key_family(domain: str, resource: Optional[str] = None) -> CacheKey:
    """Prefix matching every key of a domain, or of one of its sub-resources."""
    if resource is None:
        return make_key(domain)
    return make_key(domain, resource)


class DomainKeys:
    def __init__(self, domain: str):
        self.domain = domain

    @property
    def all(self) -> CacheKey:
        return key_family(self.domain)

    @property
    def lists(self) -> CacheKey:
        return key_family(self.domain, "list")

    def list(self, params: Mapping[str, Any]) -> CacheKey:
        return build_key(self.domain, "list", params)

    def detail(self, id: Any, params: Optional[Mapping[str, Any]] = None) -> CacheKey:
        return build_key(self.domain, "detail", {**(params or {}), "id": id})


class QueryKeys:
    def __init__(self, domains: Iterable[str]):
        self._domains: Dict[str, DomainKeys] = {domain: DomainKeys(domain) for domain in domains}

    def __getitem__(self, domain: str) -> DomainKeys:
        return self._domains[domain]

    def __contains__(self, domain: str) -> bool:
        return domain in self._domains

query_keys = QueryKeys(entity.value for entity in EntityEnum)
