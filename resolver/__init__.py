"""Entity resolution: slugs, show aliases and chef/restaurant dedup."""

from .entities import EntityResolver, sanitize_restaurant_name
from .shows import SHOW_ALIASES, ShowResolver, normalize_show_name, show_slug_from_source_url
from .slug import chef_slug, is_valid_slug, restaurant_slug, slugify

__all__ = [
    "EntityResolver",
    "sanitize_restaurant_name",
    "SHOW_ALIASES",
    "ShowResolver",
    "normalize_show_name",
    "show_slug_from_source_url",
    "chef_slug",
    "is_valid_slug",
    "restaurant_slug",
    "slugify",
]
