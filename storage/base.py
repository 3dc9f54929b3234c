"""Data store interface and filter vocabulary shared by all backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


class Tables:
    """Table names used by the pipeline."""

    BUDGETS = "enrichment_budgets"
    JOBS = "enrichment_jobs"
    REVIEW_QUEUE = "review_queue"
    CHEFS = "chefs"
    RESTAURANTS = "restaurants"
    SHOWS = "shows"
    CHEF_SHOWS = "chef_shows"
    SOURCE_CACHE = "show_source_cache"


@dataclass(frozen=True)
class Filter:
    """Single column predicate. ``op`` is one of ``FILTER_OPS``."""

    column: str
    op: str
    value: Any = None


@dataclass(frozen=True)
class AnyOf:
    """OR-group of predicates."""

    filters: Tuple[Filter, ...]


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False


Condition = Union[Filter, AnyOf]

FILTER_OPS = ("eq", "neq", "in", "is_null", "not_null", "lt", "lte", "gt", "gte", "ilike")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_null(column: str) -> Filter:
    return Filter(column, "is_null")


def not_null(column: str) -> Filter:
    return Filter(column, "not_null")


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def ilike(column: str, pattern: str) -> Filter:
    return Filter(column, "ilike", pattern)


def any_of(*filters: Filter) -> AnyOf:
    return AnyOf(tuple(filters))


def asc(column: str) -> OrderBy:
    return OrderBy(column, False)


def desc(column: str) -> OrderBy:
    return OrderBy(column, True)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so a user-supplied value matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DataStore(ABC):
    """Row store with the primitives the pipeline relies on.

    ``update`` returns only the rows it changed, so callers can use the filter list as a
    compare-and-set predicate. ``increment`` must be atomic with respect to concurrent
    callers. Unique-key violations surface as ``DuplicateError``.
    """

    @abstractmethod
    def select(
        self,
        table: str,
        filters: Sequence[Condition] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def insert(self, table: str, rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def upsert(
        self,
        table: str,
        row: Dict[str, Any],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def update(self, table: str, values: Dict[str, Any], filters: Sequence[Condition]) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def increment(self, table: str, match: Dict[str, Any], deltas: Dict[str, float]) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def count(self, table: str, filters: Sequence[Condition] = ()) -> int:
        pass

    def select_one(
        self,
        table: str,
        filters: Sequence[Condition] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters=filters, order_by=order_by, limit=1)
        return rows[0] if rows else None
