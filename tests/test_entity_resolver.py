from __future__ import annotations

from resolver import EntityResolver, ShowResolver
from storage import InMemoryDataStore, Tables


class PreemptedInsertStore(InMemoryDataStore):
    """Inserts a competing row right before the first insert into ``table``."""

    def __init__(self, table: str, competing_row: dict) -> None:
        super().__init__()
        self.table = table
        self.competing_row = competing_row

    def insert(self, table, rows):
        if table == self.table and self.competing_row is not None:
            row, self.competing_row = self.competing_row, None
            super().insert(table, row)
        return super().insert(table, rows)


def test_existing_restaurant_is_reused_case_insensitively() -> None:
    store = InMemoryDataStore()
    resolver = EntityResolver(store)
    existing = store.insert(
        Tables.RESTAURANTS,
        {"name": "Girl & the Goat", "slug": "girl-and-the-goat-chi", "city": "Chicago", "status": "open"},
    )[0]

    restaurant, created = resolver.get_or_create_restaurant("girl & the goat", "chicago", chef_id=None)

    assert created is False
    assert restaurant.id == existing["id"]
    assert store.count(Tables.RESTAURANTS) == 1
    assert store.count(Tables.REVIEW_QUEUE) == 0


def test_similar_names_are_candidates_not_matches() -> None:
    store = InMemoryDataStore()
    resolver = EntityResolver(store)
    existing = store.insert(
        Tables.RESTAURANTS,
        {"name": "The Publican Restaurant", "slug": "the-publican-restaurant-chicago", "city": "Chicago"},
    )[0]

    assert resolver.find_restaurant("Publican", "Chicago") is None
    candidates = resolver.duplicate_candidates("Publican", "Chicago")
    assert [(score, item.id) for score, item in candidates] == [(1.0, existing["id"])]
    assert resolver.duplicate_candidates("Publican", "Boston") == []
    assert resolver.duplicate_candidates("Monteverde", "Chicago") == []

    restaurant, created = resolver.get_or_create_restaurant("Publican", "Chicago", chef_id=None)
    assert created is True
    assert restaurant.id != existing["id"]


def test_citation_artifacts_are_stripped_before_matching() -> None:
    store = InMemoryDataStore()
    resolver = EntityResolver(store)
    restaurant, created = resolver.get_or_create_restaurant("Avec [1]", "Chicago", chef_id=None, cuisine=["Mediterranean"])

    assert created is True
    assert restaurant.name == "Avec"
    assert restaurant.slug == "avec-chicago"
    assert restaurant.cuisine == ["Mediterranean"]
    assert resolver.get_or_create_restaurant("Avec", "Chicago", chef_id=None)[1] is False


def test_get_or_create_chef_is_idempotent() -> None:
    resolver = EntityResolver(InMemoryDataStore())
    first, created = resolver.get_or_create_chef("Stephanie Izard")
    again, created_again = resolver.get_or_create_chef("stephanie izard")

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert first.slug == "stephanie-izard"


def test_concurrent_chef_creation_converges_on_one_row() -> None:
    store = PreemptedInsertStore(Tables.CHEFS, {"name": "Stephanie Izard", "slug": "stephanie-izard"})
    resolver = EntityResolver(store)

    chef, created = resolver.get_or_create_chef("Stephanie Izard")

    assert created is False
    assert chef.slug == "stephanie-izard"
    assert store.count(Tables.CHEFS) == 1


def test_concurrent_restaurant_creation_converges_on_one_row() -> None:
    store = PreemptedInsertStore(Tables.RESTAURANTS, {"name": "Duck Duck Goat", "slug": "duck-duck-goat-chicago", "city": "Chicago"})
    resolver = EntityResolver(store)

    restaurant, created = resolver.get_or_create_restaurant("Duck Duck Goat", "Chicago", chef_id=None)

    assert created is False
    assert restaurant.slug == "duck-duck-goat-chicago"
    assert store.count(Tables.RESTAURANTS) == 1


def test_show_resolution_and_linking() -> None:
    store = InMemoryDataStore()
    shows = ShowResolver(store)
    resolver = EntityResolver(store)
    chef, _ = resolver.get_or_create_chef("Brooke Williamson")

    assert shows.link_chef(chef.id, "Guy's Tournament of Champions", season="4", result="winner") is True
    assert shows.link_chef(chef.id, "Tournament of Champions", season="4", result="winner") is False

    show = shows.find_show("tournament of champions")
    assert show is not None
    assert show.slug == "tournament-of-champions"
    assert show.is_public is False
    assert store.count(Tables.SHOWS) == 1
    assert store.count(Tables.CHEF_SHOWS) == 1
