"""
NameCard Backend - Card Schemas
================================

Request bodies for card create/update/tag and the card response shapes
(detail, list page, search results, statistics).

Field limits:
    name, title, company ≤ 200    phone ≤ 50    address ≤ 500
    website ≤ 500                  notes ≤ 1000
    tags: at most 10, each ≤ 30 characters, de-duplicated
"""

import uuid
from datetime import datetime
from typing import Any, Iterable, List, Optional, Union

from pydantic import EmailStr, Field, field_validator, model_validator

from app.schemas.common import ApiModel, PaginationMeta

MAX_TAGS = 10
MAX_TAG_LENGTH = 30


def normalize_tags(value: Union[str, Iterable[str], None]) -> List[str]:
    """
    Comma-split (for strings), trim, drop empties, de-duplicate
    case-insensitively keeping first spelling.

    Raises:
        ValueError: more than MAX_TAGS tags or a tag longer than MAX_TAG_LENGTH
    """
    if value is None:
        return []
    raw = value.split(",") if isinstance(value, str) else list(value)
    tags: List[str] = []
    seen = set()
    for item in raw:
        tag = str(item).strip()
        if not tag or tag.lower() in seen:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tag '{tag[:40]}' exceeds {MAX_TAG_LENGTH} characters")
        seen.add(tag.lower())
        tags.append(tag)
    if len(tags) > MAX_TAGS:
        raise ValueError(f"A card can have at most {MAX_TAGS} tags")
    return tags


class _CardFields(ApiModel):
    name: Optional[str] = Field(default=None, max_length=200)
    title: Optional[str] = Field(default=None, max_length=200)
    company: Optional[str] = Field(default=None, max_length=200)
    email: Optional[EmailStr] = Field(default=None)
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = Field(default=None, max_length=500)
    website: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("name", "title", "company", "phone", "address", "website", "notes", mode="before")
    @classmethod
    def strip_blank(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class CardCreate(_CardFields):
    """Manual card creation (POST /api/v1/cards)."""

    tags: List[str] = Field(default_factory=list, description="Up to 10 tags")

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> List[str]:
        return normalize_tags(v)


class CardUpdate(_CardFields):
    """Partial update (PATCH); at least one field must be present."""

    tags: Optional[List[str]] = Field(default=None)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Optional[List[str]]:
        if v is None:
            return None
        return normalize_tags(v)

    @model_validator(mode="after")
    def require_one_field(self) -> "CardUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


class TagRequest(ApiModel):
    tag: str = Field(min_length=1, max_length=MAX_TAG_LENGTH)

    @field_validator("tag")
    @classmethod
    def strip_tag(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Tag must not be blank")
        return v


class CardResponse(ApiModel):
    id: uuid.UUID
    user_id: uuid.UUID
    tenant_id: uuid.UUID
    company_id: Optional[uuid.UUID] = None
    original_image_url: Optional[str] = None
    processed_image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    extracted_text: Optional[str] = None
    confidence: Optional[float] = None
    name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    scan_date: Optional[datetime] = None
    last_enrichment_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CardListResponse(ApiModel):
    cards: List[CardResponse]
    pagination: PaginationMeta
    filters: dict = Field(default_factory=dict, description="Filters applied to this page")


class SearchHighlight(ApiModel):
    field: str
    value: str


class CardSearchResult(ApiModel):
    card: CardResponse
    rank: float = Field(description="Relevance score; higher is better")
    highlights: List[SearchHighlight] = Field(default_factory=list)


class SearchMeta(ApiModel):
    query: Optional[str]
    execution_time_ms: float
    total_matches: int
    search_type: str = "fulltext"


class CardSearchResponse(ApiModel):
    results: List[CardSearchResult]
    pagination: PaginationMeta
    search_meta: SearchMeta


class CountItem(ApiModel):
    name: str
    count: int


class CardStatsResponse(ApiModel):
    total_cards: int
    cards_this_month: int
    cards_with_company: int
    enriched_cards: int
    top_companies: List[CountItem] = Field(default_factory=list)
    top_tags: List[CountItem] = Field(default_factory=list)
