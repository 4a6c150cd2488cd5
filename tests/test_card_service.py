"""
NameCard Backend - Card Service Unit Tests
===========================================

What we test:
    ✅ Manual create (email lowercased, tags kept)
    ✅ Ownership: another user's card is reported as not found
    ✅ List pagination metadata and echoed filters
    ✅ Search ranking (SQL weighted rank, recency among ties, LIMIT/OFFSET, highlights)
    ✅ Partial update touches only the provided fields
    ✅ Tag limits on add
    ✅ Statistics aggregation
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from app.exceptions import NotFoundError, ValidationError
from app.schemas.card import CardCreate, CardUpdate
from app.services.card_service import CardService, match_highlights, rank_expression


def db_result(scalar=None, scalars=None, rows=None, one=None):
    result = MagicMock()
    result.scalar.return_value = scalar
    result.scalar_one_or_none.return_value = one
    result.scalars.return_value.all.return_value = scalars or []
    result.all.return_value = rows or []
    return result


def populate_on_refresh(card):
    now = datetime.now(timezone.utc)
    card.id = card.id or uuid4()
    card.created_at = card.created_at or now
    card.updated_at = card.updated_at or now


class TestCreateAndGet:

    def setup_method(self):
        self.service = CardService()

    @pytest.mark.asyncio
    async def test_create_card(self, mock_db_session, user):
        mock_db_session.refresh.side_effect = populate_on_refresh

        response = await self.service.create_card(
            mock_db_session,
            user,
            CardCreate(name="Jane Roe", email="Jane@Example.COM", tags="vip, Lead ,vip"),
        )

        card = mock_db_session.add.call_args.args[0]
        assert card.user_id == user.id
        assert card.tenant_id == user.tenant_id
        assert response.email == "jane@example.com"
        assert response.tags == ["vip", "Lead"]

    @pytest.mark.asyncio
    async def test_get_own_card(self, mock_db_session, user, make_card):
        card = make_card()
        mock_db_session.execute.return_value = db_result(one=card)
        response = await self.service.get_card(mock_db_session, user, card.id)
        assert response.id == card.id
        assert response.name == "John Smith"

    @pytest.mark.asyncio
    async def test_other_users_card_is_not_found(self, mock_db_session, user, make_card):
        card = make_card(user_id=uuid4())
        mock_db_session.execute.return_value = db_result(one=card)
        with pytest.raises(NotFoundError):
            await self.service.get_card(mock_db_session, user, card.id)

    @pytest.mark.asyncio
    async def test_missing_card(self, mock_db_session, user):
        mock_db_session.execute.return_value = db_result(one=None)
        with pytest.raises(NotFoundError, match="card"):
            await self.service.delete_card(mock_db_session, user, uuid4())
        mock_db_session.delete.assert_not_awaited()


class TestListAndSearch:

    def setup_method(self):
        self.service = CardService()

    @pytest.mark.asyncio
    async def test_list_pagination(self, mock_db_session, user, make_card):
        cards = [make_card(name="A One"), make_card(name="B Two")]
        mock_db_session.execute.side_effect = [db_result(scalar=45), db_result(scalars=cards)]

        response = await self.service.list_cards(
            mock_db_session, user, page=2, limit=20, q="acme", tags="vip"
        )

        assert [c.name for c in response.cards] == ["A One", "B Two"]
        assert response.pagination.total == 45
        assert response.pagination.total_pages == 3
        assert response.pagination.has_next and response.pagination.has_prev
        assert response.filters == {"q": "acme", "tags": ["vip"]}

    @pytest.mark.asyncio
    async def test_tag_filter_too_long(self, mock_db_session, user):
        with pytest.raises(ValidationError):
            await self.service.list_cards(mock_db_session, user, tags="x" * 31)

    @pytest.mark.asyncio
    async def test_search_ranking(self, mock_db_session, user, make_card):
        strong = make_card(name="Jane Roe", company="Acme", email="jane@acme.com")
        note = make_card(name="Pat Lee", company="Initech", email=None, notes="met at acme expo")
        # Page rows as the database returns them: (card, rank), best first
        mock_db_session.execute.side_effect = [
            db_result(scalar=3),
            db_result(rows=[(strong, 1.3), (note, 0.3)]),
        ]

        response = await self.service.search_cards(mock_db_session, user, q="ACME", limit=2)

        assert [r.card.name for r in response.results] == ["Jane Roe", "Pat Lee"]
        assert response.results[0].rank == 1.3
        assert [h.field for h in response.results[0].highlights] == ["company", "email"]
        assert [h.field for h in response.results[1].highlights] == ["notes"]
        assert response.search_meta.total_matches == 3
        assert response.pagination.has_next

    @pytest.mark.asyncio
    async def test_search_ranks_and_pages_in_sql(self, mock_db_session, user):
        mock_db_session.execute.side_effect = [db_result(scalar=0), db_result(rows=[])]

        await self.service.search_cards(mock_db_session, user, q="acme", page=2, limit=5)

        statement = mock_db_session.execute.await_args_list[1].args[0]
        compiled = statement.compile(dialect=postgresql.dialect())
        sql = str(compiled)
        assert "CASE WHEN" in sql
        assert "ORDER BY rank DESC, cards.created_at DESC" in sql
        assert "LIMIT" in sql and "OFFSET" in sql
        assert 5 in compiled.params.values()

    def test_blank_query_has_no_highlights(self, make_card):
        assert match_highlights(make_card(), "  ") == []
        assert rank_expression("  ").name == "rank"


class TestUpdateAndTags:

    def setup_method(self):
        self.service = CardService()

    @pytest.mark.asyncio
    async def test_partial_update(self, mock_db_session, user, make_card):
        card = make_card(notes="keep me")
        mock_db_session.execute.return_value = db_result(one=card)

        response = await self.service.update_card(
            mock_db_session, user, card.id, CardUpdate(title="CTO", email="NEW@ACME.COM")
        )

        assert response.title == "CTO"
        assert response.email == "new@acme.com"
        assert response.notes == "keep me"
        assert response.name == "John Smith"

    def test_empty_update_rejected(self):
        with pytest.raises(ValueError):
            CardUpdate()

    @pytest.mark.asyncio
    async def test_add_tag_dedupes(self, mock_db_session, user, make_card):
        card = make_card(tags=["VIP"])
        mock_db_session.execute.return_value = db_result(one=card)

        response = await self.service.add_tag(mock_db_session, user, card.id, "vip")

        assert response.tags == ["VIP"]

    @pytest.mark.asyncio
    async def test_add_tag_over_limit(self, mock_db_session, user, make_card):
        card = make_card(tags=[f"t{i}" for i in range(10)])
        mock_db_session.execute.return_value = db_result(one=card)

        with pytest.raises(ValidationError, match="at most 10"):
            await self.service.add_tag(mock_db_session, user, card.id, "one-more")


class TestStats:

    @pytest.mark.asyncio
    async def test_stats(self, mock_db_session, user):
        mock_db_session.execute.side_effect = [
            db_result(scalar=7),
            db_result(scalar=2),
            db_result(scalar=5),
            db_result(scalar=1),
            db_result(rows=[("Acme", 3), ("Globex", 2)]),
            db_result(scalars=[["scan", "vip"], ["scan"], None]),
        ]

        stats = await CardService().get_stats(mock_db_session, user)

        assert stats.total_cards == 7
        assert stats.cards_this_month == 2
        assert stats.cards_with_company == 5
        assert stats.enriched_cards == 1
        assert [(c.name, c.count) for c in stats.top_companies] == [("Acme", 3), ("Globex", 2)]
        assert [(t.name, t.count) for t in stats.top_tags] == [("scan", 2), ("vip", 1)]
