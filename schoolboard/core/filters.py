"""Declarative row predicates shared by the planner and the data backends.

A filter can be evaluated against a row dict (memory backend) or rendered as a
PostgREST query parameter (REST backend). Both renderings must agree.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Tuple, Union

OPERATORS = ("eq", "neq", "in", "ilike", "is", "gte", "lte")


def _render_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _render_list_item(value: Any) -> str:
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return _render_value(value)


def _like_to_regex(pattern: str) -> "re.Pattern":
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any = None

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")
        if self.op == "in":
            object.__setattr__(self, "value", tuple(self.value))

    def matches(self, row: Dict[str, Any]) -> bool:
        current = row.get(self.column)
        if self.op == "eq":
            return current is not None and current == self.value
        if self.op == "neq":
            return current is not None and current != self.value
        if self.op == "in":
            return current is not None and current in self.value
        if self.op == "is":
            return current is self.value if self.value is None else current == self.value
        if current is None:
            return False
        if self.op == "ilike":
            return bool(_like_to_regex(self.value).fullmatch(str(current)))
        if self.op == "gte":
            return current >= self.value
        return current <= self.value

    def to_expression(self) -> str:
        if self.op == "in":
            items = ",".join(_render_list_item(v) for v in self.value)
            return f"in.({items})"
        if self.op == "ilike":
            return f"ilike.{self.value.replace('%', '*')}"
        return f"{self.op}.{_render_value(self.value)}"

    def to_param(self) -> Tuple[str, str]:
        return self.column, self.to_expression()


@dataclass(frozen=True)
class AnyOf:
    """OR-combination of filters."""
    filters: Tuple[Filter, ...]

    def matches(self, row: Dict[str, Any]) -> bool:
        return any(f.matches(row) for f in self.filters)

    def to_param(self) -> Tuple[str, str]:
        inner = ",".join(f"{f.column}.{f.to_expression()}" for f in self.filters)
        return "or", f"({inner})"


Predicate = Union[Filter, AnyOf]


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def ilike(column: str, pattern: str) -> Filter:
    return Filter(column, "ilike", pattern)


def is_null(column: str) -> Filter:
    return Filter(column, "is", None)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def any_of(*filters: Filter) -> AnyOf:
    return AnyOf(tuple(filters))


def contains(columns: Iterable[str], text: str) -> Predicate:
    """Case-insensitive substring search over one or more columns."""
    # wildcards and PostgREST list syntax cannot be escaped inside or=(...)
    escaped = re.sub(r"[%*,()]", "", text)
    filters = tuple(ilike(column, f"%{escaped}%") for column in columns)
    if len(filters) == 1:
        return filters[0]
    return AnyOf(filters)
