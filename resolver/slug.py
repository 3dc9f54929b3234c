"""URL slug generation for chefs, restaurants and shows."""

from __future__ import annotations

import re
from typing import Optional

from unidecode import unidecode

from utils.exceptions import ValidationError


MAX_SLUG_LENGTH = 200

_APOSTROPHES = re.compile(r"['‘’ʼ`]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_VALID_SLUG = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_DISAMBIGUATOR = re.compile(r"\s*\(\d+\)\s*$")


def slugify(text: Optional[str]) -> str:
    """Lowercase ASCII slug. ``slugify(slugify(x)) == slugify(x)``."""
    raw = str(text or "")
    value = _APOSTROPHES.sub("", raw)
    value = unidecode(value).lower()
    value = _APOSTROPHES.sub("", value)
    value = _NON_ALNUM.sub("-", value).strip("-")
    if len(value) > MAX_SLUG_LENGTH:
        value = value[:MAX_SLUG_LENGTH].rstrip("-")
    if not value:
        raise ValidationError("Cannot generate slug from empty text", {"text": raw})
    return value


def chef_slug(name: str) -> str:
    """Slug for a chef name, ignoring a trailing ``(2)``-style disambiguator."""
    return slugify(_DISAMBIGUATOR.sub("", str(name or "")))


def restaurant_slug(name: str, city: Optional[str] = None) -> str:
    if city and str(city).strip():
        return slugify(f"{name} {city}")
    return slugify(name)


def is_valid_slug(value: Optional[str]) -> bool:
    text = str(value or "")
    return bool(text) and len(text) <= MAX_SLUG_LENGTH and bool(_VALID_SLUG.match(text))
