"""Target schemas for structured LLM extraction."""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from utils.text import strip_citations


def _clean_text(value: Any) -> Any:
    if isinstance(value, str):
        return strip_citations(value)
    return value


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    cleaned = [strip_citations(str(item)) for item in value]
    return [item for item in cleaned if item]


class ChefBioExtraction(BaseModel):
    """Bio, James Beard status and awards for one chef."""

    mini_bio: Optional[str] = None
    james_beard_status: Optional[Literal["winner", "nominated", "semifinalist"]] = None
    notable_awards: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("mini_bio", mode="before")
    @classmethod
    def _clean_bio(cls, value: Any) -> Any:
        cleaned = _clean_text(value)
        return cleaned or None

    @field_validator("james_beard_status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip().lower()
        return text or None

    @field_validator("notable_awards", mode="before")
    @classmethod
    def _clean_awards(cls, value: Any) -> List[str]:
        return _string_list(value)


class RestaurantExtraction(BaseModel):
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    cuisine: List[str] = Field(default_factory=list)
    status: Literal["open", "closed", "unknown"] = "unknown"
    website: Optional[str] = None
    role: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("name", "address", "city", "state", "country", "role", mode="before")
    @classmethod
    def _clean_fields(cls, value: Any) -> Any:
        cleaned = _clean_text(value)
        if isinstance(cleaned, str) and not cleaned:
            return None
        return cleaned

    @field_validator("cuisine", mode="before")
    @classmethod
    def _clean_cuisine(cls, value: Any) -> List[str]:
        return _string_list(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        text = str(value or "unknown").strip().lower()
        return text if text in ("open", "closed") else "unknown"


class RestaurantsExtraction(BaseModel):
    restaurants: List[RestaurantExtraction] = Field(default_factory=list)

    @field_validator("restaurants", mode="before")
    @classmethod
    def _drop_nameless(cls, value: Any) -> List[Any]:
        items = list(value or [])
        return [item for item in items if not isinstance(item, dict) or str(item.get("name") or "").strip()]


class StatusExtraction(BaseModel):
    status: Literal["open", "closed", "unknown"] = "unknown"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return str(value or "unknown").strip().lower()

    @field_validator("reason", mode="before")
    @classmethod
    def _clean_reason(cls, value: Any) -> Any:
        return _clean_text(value)


class ChefFilterDecision(BaseModel):
    is_chef: bool
    reason: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


class DuplicateVerdict(BaseModel):
    """Whether a discovered restaurant is the same place as one already on file."""

    is_duplicate: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: Optional[str] = None

    @field_validator("reason", mode="before")
    @classmethod
    def _clean_reason(cls, value: Any) -> Any:
        return _clean_text(value)


class ShowAppearanceExtraction(BaseModel):
    show_name: str
    season: Optional[str] = None
    result: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("show_name", mode="before")
    @classmethod
    def _clean_show(cls, value: Any) -> Any:
        return _clean_text(value)

    @field_validator("season", mode="before")
    @classmethod
    def _season_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return strip_citations(str(value)) or None

    @field_validator("result", mode="before")
    @classmethod
    def _normalize_result(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return strip_citations(str(value)).lower() or None


class ShowAppearancesExtraction(BaseModel):
    shows: List[ShowAppearanceExtraction] = Field(default_factory=list)

    @field_validator("shows", mode="before")
    @classmethod
    def _drop_nameless(cls, value: Any) -> List[Any]:
        items = list(value or [])
        return [item for item in items if not isinstance(item, dict) or str(item.get("show_name") or "").strip()]
