from __future__ import annotations

import pytest

from resolver import (
    chef_slug,
    is_valid_slug,
    normalize_show_name,
    restaurant_slug,
    show_slug_from_source_url,
    slugify,
)
from utils.exceptions import ValidationError


@pytest.mark.parametrize(
    "text, expected",
    [
        ("José Andrés", "jose-andres"),
        ("Hell's Kitchen", "hells-kitchen"),
        ("Guy’s Grocery Games", "guys-grocery-games"),
        ("  Top Chef:  All-Stars L.A. ", "top-chef-all-stars-l-a"),
        ("Crème Brûlée & Co.", "creme-brulee-co"),
    ],
)
def test_slugify_examples(text: str, expected: str) -> None:
    assert slugify(text) == expected


@pytest.mark.parametrize("text", ["José Andrés", "Hell's Kitchen", "a--b__c", "Ünïcödé 123"])
def test_slugify_is_idempotent(text: str) -> None:
    once = slugify(text)
    assert slugify(once) == once
    assert is_valid_slug(once)


def test_slugify_rejects_text_without_ascii_content() -> None:
    with pytest.raises(ValidationError):
        slugify("!!!")
    with pytest.raises(ValidationError):
        slugify("")


def test_slug_is_truncated_without_trailing_dash() -> None:
    slug = slugify("a" * 199 + " tail")
    assert len(slug) <= 200
    assert not slug.endswith("-")


def test_chef_slug_ignores_disambiguator() -> None:
    assert chef_slug("John Smith (2)") == "john-smith"
    assert chef_slug("John Smith") == "john-smith"


def test_restaurant_slug_includes_city_when_known() -> None:
    assert restaurant_slug("Girl & the Goat", "Chicago") == "girl-the-goat-chicago"
    assert restaurant_slug("Girl & the Goat", None) == "girl-the-goat"
    assert restaurant_slug("Girl & the Goat", "  ") == "girl-the-goat"


def test_show_helpers() -> None:
    assert normalize_show_name("  Guy’s Grocery Games ") == "guy's grocery games"
    assert show_slug_from_source_url("https://en.wikipedia.org/wiki/Top_Chef_(season_20)") == "top-chef"
    assert show_slug_from_source_url("https://example.com/unknown") == "tournament-of-champions"
