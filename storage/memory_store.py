"""Thread-safe in-memory data store used by tests and local runs."""

from __future__ import annotations

import copy
import re
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from utils.exceptions import DuplicateError, StorageError

from .base import AnyOf, Condition, DataStore, Filter, OrderBy, Tables


DEFAULT_UNIQUE_KEYS: Dict[str, List[Tuple[str, ...]]] = {
    Tables.BUDGETS: [("month",)],
    Tables.CHEFS: [("slug",)],
    Tables.RESTAURANTS: [("slug",)],
    Tables.SHOWS: [("slug",)],
    Tables.CHEF_SHOWS: [("chef_id", "show_id", "season")],
    Tables.SOURCE_CACHE: [("show_slug",)],
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(text: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _plain(value: Any) -> Any:
    if hasattr(value, "value") and isinstance(value, str):
        return value.value
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _comparable(left: Any, right: Any) -> Tuple[Any, Any]:
    left, right = _plain(left), _plain(right)
    if isinstance(right, datetime) and isinstance(left, str):
        left = _parse_datetime(left) or left
    elif isinstance(left, datetime) and isinstance(right, str):
        right = _parse_datetime(right) or right
    return left, right


def _like_to_regex(pattern: str) -> "re.Pattern[str]":
    parts: List[str] = []
    escaped = False
    for char in pattern:
        if escaped:
            parts.append(re.escape(char))
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _matches_filter(row: Dict[str, Any], item: Filter) -> bool:
    value = row.get(item.column)
    op = item.op
    if op == "is_null":
        return value is None
    if op == "not_null":
        return value is not None
    if op == "in":
        return any(_eq(value, candidate) for candidate in item.value)
    if op == "eq":
        return _eq(value, item.value)
    if op == "neq":
        return value is not None and not _eq(value, item.value)
    if op == "ilike":
        return value is not None and bool(_like_to_regex(str(item.value)).match(str(value)))
    if value is None or item.value is None:
        return False
    left, right = _comparable(value, item.value)
    try:
        if op == "lt":
            return left < right
        if op == "lte":
            return left <= right
        if op == "gt":
            return left > right
        if op == "gte":
            return left >= right
    except TypeError as exc:
        raise StorageError(f"Cannot compare column {item.column}", {"op": op}) from exc
    raise StorageError(f"Unsupported filter op: {op}")


def _eq(value: Any, target: Any) -> bool:
    if value is None or target is None:
        return value is None and target is None
    left, right = _comparable(value, target)
    return left == right


def _matches(row: Dict[str, Any], condition: Condition) -> bool:
    if isinstance(condition, AnyOf):
        return any(_matches_filter(row, item) for item in condition.filters)
    return _matches_filter(row, condition)


def _sort_key(column: str) -> Callable[[Dict[str, Any]], Tuple[bool, Any]]:
    def _key(row: Dict[str, Any]) -> Tuple[bool, Any]:
        value = _plain(row.get(column))
        if isinstance(value, str) and column.endswith("_at"):
            value = _parse_datetime(value) or value
        return (value is None, value if value is not None else 0)

    return _key


class InMemoryDataStore(DataStore):
    """Dict-of-lists store with unique keys and atomic operations under one lock."""

    def __init__(
        self,
        unique_keys: Optional[Dict[str, List[Tuple[str, ...]]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._unique_keys = dict(DEFAULT_UNIQUE_KEYS if unique_keys is None else unique_keys)
        self._clock = clock or _utcnow
        self._lock = Lock()

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        return self._tables.setdefault(table, [])

    def _filtered(self, table: str, filters: Sequence[Condition]) -> List[Dict[str, Any]]:
        return [row for row in self._rows(table) if all(_matches(row, item) for item in filters)]

    def _find_conflict(
        self,
        table: str,
        row: Dict[str, Any],
        against: Sequence[Dict[str, Any]],
    ) -> Optional[Tuple[str, ...]]:
        for columns in self._unique_keys.get(table, []):
            if any(row.get(column) is None for column in columns):
                continue
            for existing in against:
                if all(_eq(existing.get(column), row.get(column)) for column in columns):
                    return columns
        return None

    def _insert_locked(self, table: str, batch: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        prepared: List[Dict[str, Any]] = []
        for row in batch:
            record = copy.deepcopy(dict(row))
            record.setdefault("id", str(uuid4()))
            now = self._clock()
            record.setdefault("created_at", now)
            record.setdefault("updated_at", now)
            columns = self._find_conflict(table, record, self._rows(table) + prepared)
            if columns is not None:
                raise DuplicateError(table, {column: record.get(column) for column in columns})
            prepared.append(record)
        self._rows(table).extend(prepared)
        return copy.deepcopy(prepared)

    def select(
        self,
        table: str,
        filters: Sequence[Condition] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = list(self._filtered(table, filters))
            for order in reversed(list(order_by)):
                rows.sort(key=_sort_key(order.column), reverse=order.descending)
            if limit is not None:
                rows = rows[: max(0, int(limit))]
            return copy.deepcopy(rows)

    def insert(self, table: str, rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        batch = [rows] if isinstance(rows, dict) else list(rows)
        with self._lock:
            return self._insert_locked(table, batch)

    def upsert(
        self,
        table: str,
        row: Dict[str, Any],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        columns = [column.strip() for column in on_conflict.split(",") if column.strip()]
        with self._lock:
            existing = next(
                (
                    candidate
                    for candidate in self._rows(table)
                    if all(_eq(candidate.get(column), row.get(column)) for column in columns)
                ),
                None,
            )
            if existing is not None:
                if ignore_duplicates:
                    return []
                for key, value in row.items():
                    if key != "id":
                        existing[key] = copy.deepcopy(value)
                existing["updated_at"] = self._clock()
                return [copy.deepcopy(existing)]
            return self._insert_locked(table, [row])

    def update(self, table: str, values: Dict[str, Any], filters: Sequence[Condition]) -> List[Dict[str, Any]]:
        """Apply ``values`` to every matching row, or to none when any row would conflict."""
        with self._lock:
            targets = self._filtered(table, filters)
            untouched = [row for row in self._rows(table) if not any(row is target for target in targets)]
            candidates = [{**row, **values} for row in targets]
            for index, candidate in enumerate(candidates):
                columns = self._find_conflict(table, candidate, untouched + candidates[:index])
                if columns is not None:
                    raise DuplicateError(table, {column: candidate.get(column) for column in columns})
            changed: List[Dict[str, Any]] = []
            for row in targets:
                row.update(copy.deepcopy(values))
                changed.append(copy.deepcopy(row))
            return changed

    def increment(self, table: str, match: Dict[str, Any], deltas: Dict[str, float]) -> Optional[Dict[str, Any]]:
        filters = [Filter(column, "eq", value) for column, value in match.items()]
        with self._lock:
            rows = self._filtered(table, filters)
            if not rows:
                return None
            row = rows[0]
            for column, delta in deltas.items():
                row[column] = (row.get(column) or 0) + delta
            row["updated_at"] = self._clock()
            return copy.deepcopy(row)

    def count(self, table: str, filters: Sequence[Condition] = ()) -> int:
        with self._lock:
            return len(self._filtered(table, filters))
