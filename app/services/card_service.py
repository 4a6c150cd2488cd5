"""
NameCard Backend - Card Service
================================

What:  CRUD, filtering, search and statistics for a user's cards.
How:   Async SQLAlchemy queries scoped to the owner (user_id). Text filters
       use case-insensitive LIKE over the contact fields and the extracted
       text; tag filters use array containment (all requested tags present).

Search ranking (per matching field, summed):
    name 1.0, company 0.8, title 0.6, email 0.5, phone 0.4,
    notes 0.3, extracted text 0.2
"""

import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from functools import reduce
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, desc, func, literal_column, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError, NotFoundError, ValidationError
from app.models.card import Card
from app.models.user import User
from app.schemas.card import (
    CardCreate,
    CardListResponse,
    CardResponse,
    CardSearchResponse,
    CardSearchResult,
    CardStatsResponse,
    CardUpdate,
    CountItem,
    SearchHighlight,
    SearchMeta,
    normalize_tags,
)
from app.schemas.common import PaginationMeta

logger = logging.getLogger(__name__)

SEARCH_WEIGHTS: Tuple[Tuple[str, float], ...] = (
    ("name", 1.0),
    ("company", 0.8),
    ("title", 0.6),
    ("email", 0.5),
    ("phone", 0.4),
    ("notes", 0.3),
    ("extracted_text", 0.2),
)

STATS_TOP_N = 5


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _text_filter(q: str):
    pattern = f"%{_escape_like(q.strip())}%"
    return or_(*(getattr(Card, column).ilike(pattern, escape="\\") for column, _ in SEARCH_WEIGHTS))


def rank_expression(q: Optional[str]):
    """
    SQL relevance score: the summed weights of the columns containing `q`
    (case-insensitive substring). A blank query scores every row 0.
    """
    if not q or not q.strip():
        return literal_column("0.0").label("rank")
    pattern = f"%{_escape_like(q.strip())}%"
    terms = [
        case(
            (getattr(Card, column).ilike(pattern, escape="\\"), literal_column(str(weight))),
            else_=literal_column("0.0"),
        )
        for column, weight in SEARCH_WEIGHTS
    ]
    return reduce(lambda left, right: left + right, terms).label("rank")


def match_highlights(card: Card, q: Optional[str]) -> List[SearchHighlight]:
    """Fields of `card` containing the query, in weight order."""
    if not q or not q.strip():
        return []
    needle = q.strip().lower()
    highlights: List[SearchHighlight] = []
    for column, _ in SEARCH_WEIGHTS:
        value = getattr(card, column, None)
        if value and needle in value.lower():
            highlights.append(SearchHighlight(field=column, value=value[:200]))
    return highlights


class CardService:
    """Stateless; receives the session per call like the other services."""

    def _filters(
        self,
        user: User,
        q: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        company: Optional[str] = None,
    ) -> List[Any]:
        conditions: List[Any] = [Card.user_id == user.id]
        if q and q.strip():
            conditions.append(_text_filter(q))
        if tags:
            conditions.append(Card.tags.contains(list(tags)))
        if company and company.strip():
            conditions.append(
                Card.company.ilike(f"%{_escape_like(company.strip())}%", escape="\\")
            )
        return conditions

    async def create_card(self, db: AsyncSession, user: User, data: CardCreate) -> CardResponse:
        card = Card(
            user_id=user.id,
            tenant_id=user.tenant_id,
            name=data.name,
            title=data.title,
            company=data.company,
            email=str(data.email).lower() if data.email else None,
            phone=data.phone,
            address=data.address,
            website=data.website,
            notes=data.notes,
            tags=list(data.tags),
        )
        db.add(card)
        try:
            await db.flush()
            await db.refresh(card)
        except SQLAlchemyError as e:
            logger.error("Failed to create card for user %s: %s", user.id, str(e))
            raise DatabaseError(message="Could not save the card. Please try again.")
        logger.info("Card %s created manually by user %s", card.id, user.id)
        return CardResponse.model_validate(card)

    async def get_owned_card(self, db: AsyncSession, user: User, card_id: uuid.UUID) -> Card:
        result = await db.execute(select(Card).where(Card.id == card_id))
        card = result.scalar_one_or_none()
        # Another user's card is reported as missing
        if card is None or card.user_id != user.id:
            raise NotFoundError(resource="card", resource_id=str(card_id))
        return card

    async def get_card(self, db: AsyncSession, user: User, card_id: uuid.UUID) -> CardResponse:
        card = await self.get_owned_card(db, user, card_id)
        return CardResponse.model_validate(card)

    async def list_cards(
        self,
        db: AsyncSession,
        user: User,
        page: int = 1,
        limit: int = 20,
        q: Optional[str] = None,
        tags: Optional[str] = None,
        company: Optional[str] = None,
    ) -> CardListResponse:
        """
        Newest-first page of the user's cards.

        Args:
            tags: comma-separated; every tag must be present on the card
        """
        tag_list = self._parse_tag_filter(tags)
        conditions = self._filters(user, q, tag_list, company)

        try:
            total = (
                await db.execute(select(func.count(Card.id)).where(and_(*conditions)))
            ).scalar() or 0
            result = await db.execute(
                select(Card)
                .where(and_(*conditions))
                .order_by(desc(Card.created_at))
                .offset((page - 1) * limit)
                .limit(limit)
            )
            cards = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing cards: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not retrieve cards. Please try again.")

        filters: Dict[str, Any] = {}
        if q:
            filters["q"] = q
        if tag_list:
            filters["tags"] = tag_list
        if company:
            filters["company"] = company

        return CardListResponse(
            cards=[CardResponse.model_validate(card) for card in cards],
            pagination=PaginationMeta.build(page, limit, total),
            filters=filters,
        )

    async def search_cards(
        self,
        db: AsyncSession,
        user: User,
        q: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        tags: Optional[str] = None,
        company: Optional[str] = None,
    ) -> CardSearchResponse:
        """Filtered cards ordered by weighted field matches, then recency."""
        start = time.perf_counter()
        tag_list = self._parse_tag_filter(tags)
        conditions = self._filters(user, q, tag_list, company)

        rank = rank_expression(q)
        try:
            total = (
                await db.execute(select(func.count(Card.id)).where(and_(*conditions)))
            ).scalar() or 0
            result = await db.execute(
                select(Card, rank)
                .where(and_(*conditions))
                .order_by(desc(rank), desc(Card.created_at))
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Database error searching cards: %s", str(e), exc_info=True)
            raise DatabaseError(message="Search failed. Please try again.")

        return CardSearchResponse(
            results=[
                CardSearchResult(
                    card=CardResponse.model_validate(card),
                    rank=round(float(score or 0), 2),
                    highlights=match_highlights(card, q),
                )
                for card, score in rows
            ],
            pagination=PaginationMeta.build(page, limit, total),
            search_meta=SearchMeta(
                query=q,
                execution_time_ms=round((time.perf_counter() - start) * 1000, 2),
                total_matches=total,
            ),
        )

    async def update_card(
        self, db: AsyncSession, user: User, card_id: uuid.UUID, data: CardUpdate
    ) -> CardResponse:
        card = await self.get_owned_card(db, user, card_id)
        for field_name in data.model_fields_set:
            value = getattr(data, field_name)
            if field_name == "email" and value is not None:
                value = str(value).lower()
            if field_name == "tags":
                value = list(value or [])
            setattr(card, field_name, value)
        card.updated_at = datetime.now(timezone.utc)
        await db.flush()
        await db.refresh(card)
        logger.info("Card %s updated (%s)", card.id, ", ".join(sorted(data.model_fields_set)))
        return CardResponse.model_validate(card)

    async def delete_card(self, db: AsyncSession, user: User, card_id: uuid.UUID) -> None:
        card = await self.get_owned_card(db, user, card_id)
        await db.delete(card)
        await db.flush()
        logger.info("Card %s deleted by user %s", card_id, user.id)

    async def add_tag(self, db: AsyncSession, user: User, card_id: uuid.UUID, tag: str) -> CardResponse:
        """
        Raises:
            ValidationError: the tag would exceed the tag limits
        """
        card = await self.get_owned_card(db, user, card_id)
        try:
            card.tags = normalize_tags(list(card.tags or []) + [tag])
        except ValueError as e:
            raise ValidationError(message=str(e), field="tag")
        card.updated_at = datetime.now(timezone.utc)
        await db.flush()
        await db.refresh(card)
        return CardResponse.model_validate(card)

    async def get_stats(self, db: AsyncSession, user: User) -> CardStatsResponse:
        now = datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        owned = Card.user_id == user.id

        try:
            total = (await db.execute(select(func.count(Card.id)).where(owned))).scalar() or 0
            this_month = (
                await db.execute(
                    select(func.count(Card.id)).where(owned, Card.created_at >= month_start)
                )
            ).scalar() or 0
            with_company = (
                await db.execute(
                    select(func.count(Card.id)).where(owned, Card.company.is_not(None), Card.company != "")
                )
            ).scalar() or 0
            enriched = (
                await db.execute(
                    select(func.count(Card.id)).where(owned, Card.last_enrichment_date.is_not(None))
                )
            ).scalar() or 0
            company_rows = (
                await db.execute(
                    select(Card.company, func.count(Card.id).label("n"))
                    .where(owned, Card.company.is_not(None), Card.company != "")
                    .group_by(Card.company)
                    .order_by(desc("n"), Card.company)
                    .limit(STATS_TOP_N)
                )
            ).all()
            tag_rows = (await db.execute(select(Card.tags).where(owned))).scalars().all()
        except SQLAlchemyError as e:
            logger.error("Database error computing card stats: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not compute statistics. Please try again.")

        tag_counts: Counter = Counter()
        for tags in tag_rows:
            tag_counts.update(tags or [])

        return CardStatsResponse(
            total_cards=total,
            cards_this_month=this_month,
            cards_with_company=with_company,
            enriched_cards=enriched,
            top_companies=[CountItem(name=name, count=count) for name, count in company_rows],
            top_tags=[CountItem(name=name, count=count) for name, count in tag_counts.most_common(STATS_TOP_N)],
        )

    def _parse_tag_filter(self, tags: Optional[str]) -> List[str]:
        try:
            return normalize_tags(tags)
        except ValueError as e:
            raise ValidationError(message=str(e), field="tags")


card_service = CardService()
