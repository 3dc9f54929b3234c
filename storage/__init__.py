"""
Storage Module
Data store backends and the show source cache.
"""
from .base import (
    AnyOf,
    DataStore,
    Filter,
    OrderBy,
    Tables,
    any_of,
    asc,
    desc,
    eq,
    escape_like,
    gt,
    gte,
    ilike,
    in_,
    is_null,
    lt,
    lte,
    neq,
    not_null,
)
from .memory_store import InMemoryDataStore
from .source_cache import ShowSourceCache, ShowSourceEntry, ShowSourceFetcher


def build_store(settings) -> DataStore:
    """
    Build the configured data store.

    Args:
        settings: ``StoreSettings``

    Returns:
        In-memory store, or the Supabase adapter when ``backend == "supabase"``
    """
    from utils.exceptions import ConfigurationError

    backend = str(settings.backend or "memory").strip().lower()
    if backend == "memory":
        return InMemoryDataStore()
    if backend == "supabase":
        from .supabase_store import SupabaseDataStore
        return SupabaseDataStore.from_credentials(settings.supabase_url, settings.supabase_key)
    raise ConfigurationError(f"Unknown store backend: {settings.backend}")


__all__ = [
    "AnyOf",
    "DataStore",
    "Filter",
    "OrderBy",
    "Tables",
    "any_of",
    "asc",
    "desc",
    "eq",
    "escape_like",
    "gt",
    "gte",
    "ilike",
    "in_",
    "is_null",
    "lt",
    "lte",
    "neq",
    "not_null",
    "InMemoryDataStore",
    "ShowSourceCache",
    "ShowSourceEntry",
    "ShowSourceFetcher",
    "build_store",
]
