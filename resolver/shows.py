"""Show name resolution and chef/show linking."""

from __future__ import annotations

import logging
import re
from typing import Dict, Optional
from urllib.parse import unquote, urlparse

from core import ShowRecord
from storage import DataStore, Tables, eq, escape_like, ilike
from utils.exceptions import DuplicateError, ValidationError

from .slug import slugify


logger = logging.getLogger(__name__)

SHOW_ALIASES: Dict[str, str] = {
    "top chef": "top-chef",
    "top chef masters": "top-chef-masters",
    "top chef: just desserts": "top-chef-just-desserts",
    "top chef just desserts": "top-chef-just-desserts",
    "top chef junior": "top-chef-junior",
    "top chef duels": "top-chef-duels",
    "top chef amateurs": "top-chef-amateurs",
    "top chef family style": "top-chef-family-style",
    "top chef estrellas": "top-chef-estrellas",
    "top chef vip": "top-chef-vip",
    "top chef canada": "top-chef-canada",
    "top chef: all-stars l.a.": "top-chef",
    "top chef all-stars l.a.": "top-chef",
    "iron chef": "iron-chef",
    "iron chef america": "iron-chef-america",
    "tournament of champions": "tournament-of-champions",
    "guy's tournament of champions": "tournament-of-champions",
    "guy fieri's tournament of champions": "tournament-of-champions",
    "chopped": "chopped",
    "chopped champions": "chopped-champions",
    "chopped sweets": "chopped-sweets",
    "beat bobby flay": "beat-bobby-flay",
    "hell's kitchen": "hells-kitchen",
    "hells kitchen": "hells-kitchen",
    "masterchef": "masterchef",
    "masterchef us": "masterchef",
    "next level chef": "next-level-chef",
    "guy's grocery games": "guys-grocery-games",
    "guys grocery games": "guys-grocery-games",
    "cutthroat kitchen": "cutthroat-kitchen",
    "worst cooks in america": "worst-cooks-in-america",
    "the great food truck race": "the-great-food-truck-race",
    "great food truck race": "the-great-food-truck-race",
    "outchef'd": "outchef-d",
    "outchefed": "outchef-d",
}

# Source page name fragments -> show slug; first match wins.
SOURCE_URL_SHOWS = (
    ("top_chef", "top-chef"),
    ("iron_chef", "iron-chef-america"),
    ("next_level", "next-level-chef"),
    ("chopped", "chopped"),
    ("hells_kitchen", "hells-kitchen"),
    ("hell's_kitchen", "hells-kitchen"),
    ("masterchef", "masterchef"),
    ("master_chef", "masterchef"),
    ("beat_bobby_flay", "beat-bobby-flay"),
)
DEFAULT_SOURCE_SHOW = "tournament-of-champions"

_NAME_SANITIZER = re.compile(r"[^\w\s\-'&:.]")
_CURLY_APOSTROPHES = re.compile(r"[‘’ʼ]")


def normalize_show_name(name: str) -> str:
    return _CURLY_APOSTROPHES.sub("'", str(name or "")).strip().lower()


def show_slug_from_source_url(url: str) -> str:
    """Map a source page URL (e.g. a wiki article) to the show it lists."""
    path = unquote(urlparse(str(url or "")).path).lower()
    for fragment, slug in SOURCE_URL_SHOWS:
        if fragment in path:
            return slug
    return DEFAULT_SOURCE_SHOW


class ShowResolver:
    """Resolve free-text show names to show rows, creating non-public shows on demand."""

    def __init__(self, store: DataStore) -> None:
        self.store = store

    def _by_slug(self, slug: str) -> Optional[ShowRecord]:
        row = self.store.select_one(Tables.SHOWS, [eq("slug", slug)])
        return ShowRecord(**row) if row else None

    def find_show(self, name: str) -> Optional[ShowRecord]:
        normalized = normalize_show_name(name)
        if not normalized:
            return None

        alias = SHOW_ALIASES.get(normalized)
        if alias:
            return self._by_slug(alias)

        logger.warning("[Shows] Unknown show %r, falling back to name lookup", name)
        sanitized = _NAME_SANITIZER.sub("", str(name)).strip()
        if not sanitized:
            return None
        row = self.store.select_one(Tables.SHOWS, [ilike("name", escape_like(sanitized))])
        if row:
            return ShowRecord(**row)
        return self._by_slug(slugify(sanitized))

    def create_show(self, name: str, network: Optional[str] = None) -> ShowRecord:
        """Create a non-public show; concurrent creators converge on the same row."""
        clean = str(name or "").strip()
        if not clean:
            raise ValidationError("Show name is required")
        slug = SHOW_ALIASES.get(normalize_show_name(clean)) or slugify(clean)
        row = {"name": clean, "slug": slug, "network": network, "is_public": False}
        try:
            self.store.upsert(Tables.SHOWS, row, on_conflict="slug", ignore_duplicates=True)
        except DuplicateError:
            logger.info("[Shows] %s created concurrently, refetching", slug)
        show = self._by_slug(slug)
        if show is None:
            raise ValidationError("Show could not be created", {"slug": slug})
        return show

    def resolve(self, name: str, *, create: bool = True) -> Optional[ShowRecord]:
        show = self.find_show(name)
        if show is None and create and str(name or "").strip():
            show = self.create_show(name)
            logger.info("[Shows] Created non-public show %s", show.slug)
        return show

    def link_chef(
        self,
        chef_id: str,
        show_name: str,
        *,
        season: Optional[str] = None,
        result: Optional[str] = None,
        create_show: bool = True,
    ) -> bool:
        """Attach a chef to a show appearance. Returns False when it already exists or the show is unknown."""
        show = self.resolve(show_name, create=create_show)
        if show is None:
            logger.warning("[Shows] Could not resolve show %r for chef %s", show_name, chef_id)
            return False

        existing = self.store.select_one(
            Tables.CHEF_SHOWS,
            [eq("chef_id", chef_id), eq("show_id", show.id), eq("season", season)],
        )
        if existing:
            return False

        try:
            self.store.insert(
                Tables.CHEF_SHOWS,
                {
                    "chef_id": chef_id,
                    "show_id": show.id,
                    "season": season,
                    "season_name": f"{show.name} {season}" if season else show.name,
                    "result": result or "contestant",
                    "is_primary": False,
                },
            )
        except DuplicateError:
            return False
        return True
