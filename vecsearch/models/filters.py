"""Metadata filter predicates.

A predicate is a small immutable tree evaluated against a document's
metadata mapping.  Leaves compare one metadata field; ``And``, ``Or`` and
``Not`` combine them.  A leaf whose field is absent from the metadata never
matches, so ``Not(Eq("lang", "en"))`` matches documents that have a
``lang`` other than ``"en"`` *and* documents without a ``lang`` at all.

Predicates can be written directly::

    Eq("source_type", "book") & Range("year", gte=1990, lt=2000)

or parsed from the JSON-friendly dictionary form accepted by the HTTP API::

    parse_filter({
        "source_type": "book",
        "year": {"$gte": 1990, "$lt": 2000},
        "genres": {"$contains_any": ["techno", "house"]},
    })

Equality against a tag-set field tests membership, so ``Eq("genres",
"techno")`` matches ``{"genres": ["house", "techno"]}``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from vecsearch.utils.errors import InvalidArgumentError

_MISSING = object()


class Predicate(ABC):
    """Base class for metadata predicates."""

    @abstractmethod
    def matches(self, metadata: Mapping[str, Any]) -> bool:
        """Return ``True`` if *metadata* satisfies this predicate."""

    def __call__(self, metadata: Mapping[str, Any]) -> bool:
        return self.matches(metadata)

    def __and__(self, other: Predicate) -> Predicate:
        return And((self, other))

    def __or__(self, other: Predicate) -> Predicate:
        return Or((self, other))

    def __invert__(self) -> Predicate:
        return Not(self)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _values_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    return type(actual) is type(expected) and actual == expected


def _as_tags(value: Any) -> set[str] | None:
    if isinstance(value, str):
        return {value}
    if isinstance(value, (list, tuple, set, frozenset)):
        return {v for v in value if isinstance(v, str)}
    return None


# ---------------------------------------------------------------------------
# Leaf predicates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Eq(Predicate):
    field: str
    value: Any

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        actual = metadata.get(self.field, _MISSING)
        if actual is _MISSING:
            return False
        if isinstance(actual, (list, tuple)) and not isinstance(self.value, (list, tuple)):
            return any(_values_equal(item, self.value) for item in actual)
        if isinstance(actual, (list, tuple)) and isinstance(self.value, (list, tuple)):
            return list(actual) == list(self.value)
        return _values_equal(actual, self.value)


@dataclass(frozen=True)
class Range(Predicate):
    """Bounded comparison on a numeric (or string) field.

    Values of a different type than the bounds never match; booleans are
    not numbers here.
    """

    field: str
    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None

    def __post_init__(self) -> None:
        bounds = [b for b in (self.gt, self.gte, self.lt, self.lte) if b is not None]
        if not bounds:
            raise InvalidArgumentError(f"Range on {self.field!r} needs at least one bound")
        numeric = [_is_number(b) for b in bounds]
        textual = [isinstance(b, str) for b in bounds]
        if not (all(numeric) or all(textual)):
            raise InvalidArgumentError(
                f"Range bounds on {self.field!r} must all be numbers or all be strings"
            )

    def _comparable(self, actual: Any) -> bool:
        bound = next(b for b in (self.gt, self.gte, self.lt, self.lte) if b is not None)
        if _is_number(bound):
            return _is_number(actual)
        return isinstance(actual, str)

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        actual = metadata.get(self.field, _MISSING)
        if actual is _MISSING or not self._comparable(actual):
            return False
        if self.gt is not None and not actual > self.gt:
            return False
        if self.gte is not None and not actual >= self.gte:
            return False
        if self.lt is not None and not actual < self.lt:
            return False
        return not (self.lte is not None and not actual <= self.lte)


@dataclass(frozen=True)
class In(Predicate):
    field: str
    values: tuple[Any, ...]

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        if self.field not in metadata:
            return False
        return any(Eq(self.field, value).matches(metadata) for value in self.values)


@dataclass(frozen=True)
class TagsAny(Predicate):
    """Tag-set field shares at least one tag with ``tags``."""

    field: str
    tags: frozenset[str]

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        present = _as_tags(metadata.get(self.field))
        return bool(present and present & self.tags)


@dataclass(frozen=True)
class TagsAll(Predicate):
    """Tag-set field contains every tag in ``tags``."""

    field: str
    tags: frozenset[str]

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        present = _as_tags(metadata.get(self.field))
        return present is not None and self.tags <= present


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class And(Predicate):
    operands: tuple[Predicate, ...]

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        return all(p.matches(metadata) for p in self.operands)


@dataclass(frozen=True)
class Or(Predicate):
    operands: tuple[Predicate, ...]

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        return any(p.matches(metadata) for p in self.operands)


@dataclass(frozen=True)
class Not(Predicate):
    operand: Predicate

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        return not self.operand.matches(metadata)


# ---------------------------------------------------------------------------
# Dictionary form
# ---------------------------------------------------------------------------

_RANGE_OPS = {"$gt": "gt", "$gte": "gte", "$lt": "lt", "$lte": "lte"}


def _tag_list(field: str, op: str, value: Any) -> frozenset[str]:
    if isinstance(value, str):
        return frozenset([value])
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return frozenset(value)
    raise InvalidArgumentError(f"{op} on {field!r} expects a string or a list of strings")


def _parse_field(field: str, condition: Any) -> Predicate:
    if not isinstance(condition, dict):
        return Eq(field, condition)
    if not condition:
        raise InvalidArgumentError(f"Empty operator object for field {field!r}")

    parts: list[Predicate] = []
    bounds: dict[str, Any] = {}
    for op, value in condition.items():
        if op in _RANGE_OPS:
            bounds[_RANGE_OPS[op]] = value
        elif op == "$eq":
            parts.append(Eq(field, value))
        elif op == "$ne":
            parts.append(Not(Eq(field, value)))
        elif op == "$in":
            if not isinstance(value, list):
                raise InvalidArgumentError(f"$in on {field!r} expects a list")
            parts.append(In(field, tuple(value)))
        elif op == "$contains":
            if not isinstance(value, str):
                raise InvalidArgumentError(f"$contains on {field!r} expects a string")
            parts.append(TagsAny(field, frozenset([value])))
        elif op == "$contains_any":
            parts.append(TagsAny(field, _tag_list(field, op, value)))
        elif op == "$contains_all":
            parts.append(TagsAll(field, _tag_list(field, op, value)))
        else:
            raise InvalidArgumentError(f"Unknown filter operator {op!r} on field {field!r}")
    if bounds:
        parts.append(Range(field, **bounds))
    return parts[0] if len(parts) == 1 else And(tuple(parts))


def _parse_list(op: str, value: Any) -> tuple[Predicate, ...]:
    if not isinstance(value, list) or not value:
        raise InvalidArgumentError(f"{op} expects a non-empty list of filters")
    return tuple(parse_filter(item) for item in value)


def parse_filter(expression: Mapping[str, Any]) -> Predicate:
    """Build a :class:`Predicate` from its dictionary form.

    Top-level keys are field names or the combinators ``$and``, ``$or`` and
    ``$not``; multiple keys are combined with AND.  Field values are either
    a literal (equality) or an operator object using ``$eq``, ``$ne``,
    ``$gt``, ``$gte``, ``$lt``, ``$lte``, ``$in``, ``$contains``,
    ``$contains_any`` or ``$contains_all``.

    Raises
    ------
    InvalidArgumentError
        If the dictionary is empty or uses an unknown operator.
    """
    if not isinstance(expression, Mapping):
        raise InvalidArgumentError("Filter must be an object")
    if not expression:
        raise InvalidArgumentError("Filter must not be empty")

    parts: list[Predicate] = []
    for key, value in expression.items():
        if key == "$and":
            parts.append(And(_parse_list(key, value)))
        elif key == "$or":
            parts.append(Or(_parse_list(key, value)))
        elif key == "$not":
            if not isinstance(value, Mapping):
                raise InvalidArgumentError("$not expects a filter object")
            parts.append(Not(parse_filter(value)))
        elif key.startswith("$"):
            raise InvalidArgumentError(f"Unknown filter combinator {key!r}")
        else:
            parts.append(_parse_field(key, value))
    return parts[0] if len(parts) == 1 else And(tuple(parts))


def coerce_predicate(value: Predicate | Mapping[str, Any] | None) -> Predicate | None:
    """Accept a predicate, its dictionary form, or ``None``."""
    if value is None or isinstance(value, Predicate):
        return value
    return parse_filter(value)
