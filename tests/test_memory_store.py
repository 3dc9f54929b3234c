from __future__ import annotations

import pytest

from storage import InMemoryDataStore, Tables, eq
from utils.exceptions import DuplicateError


def _seed(store: InMemoryDataStore) -> None:
    store.insert(
        Tables.RESTAURANTS,
        [
            {"name": "Avec", "slug": "avec", "city": "Chicago"},
            {"name": "Publican", "slug": "publican", "city": "Chicago"},
            {"name": "Cabra", "slug": "cabra", "city": "Boston"},
        ],
    )


def _slugs(store: InMemoryDataStore):
    return sorted(row["slug"] for row in store.select(Tables.RESTAURANTS))


def test_update_conflict_with_another_row_changes_nothing() -> None:
    store = InMemoryDataStore()
    _seed(store)

    with pytest.raises(DuplicateError):
        store.update(Tables.RESTAURANTS, {"slug": "cabra"}, [eq("city", "Chicago")])

    assert _slugs(store) == ["avec", "cabra", "publican"]


def test_update_that_collides_within_its_own_rows_changes_nothing() -> None:
    store = InMemoryDataStore()
    _seed(store)

    with pytest.raises(DuplicateError):
        store.update(Tables.RESTAURANTS, {"slug": "chicago-spot", "status": "closed"}, [eq("city", "Chicago")])

    assert _slugs(store) == ["avec", "cabra", "publican"]
    assert all(row.get("status") is None for row in store.select(Tables.RESTAURANTS))


def test_update_keeping_its_own_key_is_not_a_conflict() -> None:
    store = InMemoryDataStore()
    _seed(store)

    changed = store.update(Tables.RESTAURANTS, {"status": "open"}, [eq("city", "Chicago")])

    assert len(changed) == 2
    assert store.count(Tables.RESTAURANTS, [eq("status", "open")]) == 2
