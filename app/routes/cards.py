"""
NameCard Backend - Card Route Handlers
=======================================

What:  /api/v1/cards: list, create, search, stats, get, update, delete, tag.
How:   Thin handlers; CardService does the work and scopes every query to
       the authenticated user. Another user's card is a 404.

Caching:
    List, search and stats responses are `private, no-cache` (they change on
    every scan); a single card is `private, max-age=60`.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.card import (
    CardCreate,
    CardListResponse,
    CardResponse,
    CardSearchResponse,
    CardStatsResponse,
    CardUpdate,
    TagRequest,
)
from app.schemas.common import ApiResponse, ErrorResponse
from app.services.card_service import card_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cards", tags=["Cards"])

_ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    401: {"description": "Missing or invalid token", "model": ErrorResponse},
}
_NOT_FOUND = {404: {"description": "Card not found", "model": ErrorResponse}}


@router.get(
    "",
    response_model=ApiResponse[CardListResponse],
    responses=_ERRORS,
    summary="List cards",
    description=(
        "Newest-first page of the caller's cards. `q` matches name, title, company, "
        "email, phone, notes and extracted text; `tags` is comma-separated and every "
        "tag must be present; `company` matches the company name."
    ),
)
async def list_cards(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    q: Optional[str] = Query(default=None, max_length=200),
    tags: Optional[str] = Query(default=None, max_length=400),
    company: Optional[str] = Query(default=None, max_length=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardListResponse]:
    result = await card_service.list_cards(db, user, page=page, limit=limit, q=q, tags=tags, company=company)
    response.headers["X-Total-Count"] = str(result.pagination.total)
    response.headers["Cache-Control"] = "private, no-cache"
    return ApiResponse(data=result)


@router.post(
    "",
    status_code=201,
    response_model=ApiResponse[CardResponse],
    responses=_ERRORS,
    summary="Create a card manually",
)
async def create_card(
    body: CardCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardResponse]:
    card = await card_service.create_card(db, user, body)
    return ApiResponse(data=card, message="Card created")


@router.get(
    "/search",
    response_model=ApiResponse[CardSearchResponse],
    responses=_ERRORS,
    summary="Search cards",
    description="Same filters as the list endpoint, ordered by relevance with matched fields.",
)
async def search_cards(
    response: Response,
    q: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    tags: Optional[str] = Query(default=None, max_length=400),
    company: Optional[str] = Query(default=None, max_length=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardSearchResponse]:
    result = await card_service.search_cards(db, user, q=q, page=page, limit=limit, tags=tags, company=company)
    response.headers["X-Total-Count"] = str(result.search_meta.total_matches)
    response.headers["Cache-Control"] = "private, no-cache"
    return ApiResponse(data=result)


@router.get(
    "/stats",
    response_model=ApiResponse[CardStatsResponse],
    responses=_ERRORS,
    summary="Card statistics for the caller",
)
async def card_stats(
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardStatsResponse]:
    response.headers["Cache-Control"] = "private, no-cache"
    return ApiResponse(data=await card_service.get_stats(db, user))


@router.get(
    "/{card_id}",
    response_model=ApiResponse[CardResponse],
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Get a card",
)
async def get_card(
    card_id: UUID,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardResponse]:
    card = await card_service.get_card(db, user, card_id)
    response.headers["Cache-Control"] = "private, max-age=60"
    return ApiResponse(data=card)


@router.patch(
    "/{card_id}",
    response_model=ApiResponse[CardResponse],
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Update a card",
    description="Partial update; only the fields present in the body change.",
)
async def update_card(
    card_id: UUID,
    body: CardUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardResponse]:
    card = await card_service.update_card(db, user, card_id, body)
    return ApiResponse(data=card, message="Card updated")


@router.delete(
    "/{card_id}",
    response_model=ApiResponse[Dict[str, Any]],
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Delete a card",
)
async def delete_card(
    card_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[Dict[str, Any]]:
    await card_service.delete_card(db, user, card_id)
    return ApiResponse(data={"id": str(card_id)}, message="Card deleted")


@router.post(
    "/{card_id}/tags",
    response_model=ApiResponse[CardResponse],
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Add a tag to a card",
)
async def add_tag(
    card_id: UUID,
    body: TagRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardResponse]:
    card = await card_service.add_tag(db, user, card_id, body.tag)
    return ApiResponse(data=card, message="Tag added")
