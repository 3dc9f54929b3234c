"""Supabase (PostgREST) backed data store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic_core import to_jsonable_python
from supabase import Client, create_client

from utils.exceptions import ConfigurationError, DuplicateError, StorageError

from .base import AnyOf, Condition, DataStore, Filter, OrderBy


logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
INCREMENT_RPC = "increment_counters"


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value)


def _or_clause(group: AnyOf) -> str:
    parts = []
    for item in group.filters:
        value = _jsonable(item.value)
        if item.op == "is_null":
            parts.append(f"{item.column}.is.null")
        elif item.op == "not_null":
            parts.append(f"{item.column}.not.is.null")
        elif item.op == "in":
            parts.append(f"{item.column}.in.({','.join(str(v) for v in value)})")
        else:
            parts.append(f"{item.column}.{item.op}.{value}")
    return ",".join(parts)


class SupabaseDataStore(DataStore):
    """Maps the store vocabulary onto supabase-py query builders."""

    def __init__(self, client: Client) -> None:
        self.client = client

    @classmethod
    def from_credentials(cls, url: Optional[str], key: Optional[str]) -> "SupabaseDataStore":
        if not url or not key:
            raise ConfigurationError("STORE_SUPABASE_URL and STORE_SUPABASE_KEY must be set for the supabase backend")
        return cls(create_client(url, key))

    def _apply_filters(self, query: Any, filters: Sequence[Condition]) -> Any:
        for condition in filters:
            if isinstance(condition, AnyOf):
                query = query.or_(_or_clause(condition))
                continue
            query = self._apply_filter(query, condition)
        return query

    @staticmethod
    def _apply_filter(query: Any, item: Filter) -> Any:
        value = _jsonable(item.value)
        if item.op == "eq":
            if value is None:
                return query.is_(item.column, "null")
            return query.eq(item.column, value)
        if item.op == "neq":
            return query.neq(item.column, value)
        if item.op == "in":
            return query.in_(item.column, list(value))
        if item.op == "is_null":
            return query.is_(item.column, "null")
        if item.op == "not_null":
            return query.not_.is_(item.column, "null")
        if item.op == "lt":
            return query.lt(item.column, value)
        if item.op == "lte":
            return query.lte(item.column, value)
        if item.op == "gt":
            return query.gt(item.column, value)
        if item.op == "gte":
            return query.gte(item.column, value)
        if item.op == "ilike":
            return query.ilike(item.column, value)
        raise StorageError(f"Unsupported filter op: {item.op}")

    def _execute(self, table: str, query: Any, row: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return query.execute()
        except Exception as exc:
            code = getattr(exc, "code", None)
            if str(code) == UNIQUE_VIOLATION:
                raise DuplicateError(table, row or {}) from exc
            raise StorageError(f"Supabase request failed for {table}: {exc}", {"code": code}) from exc

    def select(
        self,
        table: str,
        filters: Sequence[Condition] = (),
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = self._apply_filters(self.client.table(table).select("*"), filters)
        for order in order_by:
            query = query.order(order.column, desc=order.descending)
        if limit is not None:
            query = query.limit(int(limit))
        response = self._execute(table, query)
        return list(response.data or [])

    def insert(self, table: str, rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        payload = _jsonable(rows if isinstance(rows, dict) else list(rows))
        response = self._execute(table, self.client.table(table).insert(payload), payload if isinstance(payload, dict) else None)
        return list(response.data or [])

    def upsert(
        self,
        table: str,
        row: Dict[str, Any],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        payload = _jsonable(row)
        query = self.client.table(table).upsert(payload, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates)
        response = self._execute(table, query, payload)
        return list(response.data or [])

    def update(self, table: str, values: Dict[str, Any], filters: Sequence[Condition]) -> List[Dict[str, Any]]:
        query = self._apply_filters(self.client.table(table).update(_jsonable(values)), filters)
        response = self._execute(table, query)
        return list(response.data or [])

    def increment(self, table: str, match: Dict[str, Any], deltas: Dict[str, float]) -> Optional[Dict[str, Any]]:
        params = {"p_table": table, "p_match": _jsonable(match), "p_deltas": _jsonable(deltas)}
        response = self._execute(table, self.client.rpc(INCREMENT_RPC, params))
        data = response.data
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    def count(self, table: str, filters: Sequence[Condition] = ()) -> int:
        query = self._apply_filters(self.client.table(table).select("id", count="exact"), filters)
        response = self._execute(table, query)
        return int(response.count or 0)
