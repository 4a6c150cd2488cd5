"""
NameCard Backend - Enrichment Route Handlers
=============================================

What:  Company enrichment endpoints under /api/v1/enrichment.
How:   EnrichmentService decides between cached data and a source call.
       A failed source call is recorded before the 503 is returned.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.common import ApiResponse, ErrorResponse
from app.schemas.enrichment import (
    CardEnrichmentResponse,
    CompanyResponse,
    EnrichCardRequest,
    EnrichCompanyRequest,
    EnrichmentResult,
    EnrichmentSourceInfo,
)
from app.services.enrichment_service import enrichment_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/enrichment",
    tags=["Enrichment"],
    dependencies=[Depends(get_current_user)],
)

_UNAVAILABLE = {503: {"description": "Enrichment source unavailable", "model": ErrorResponse}}


@router.get(
    "/sources",
    response_model=ApiResponse[List[EnrichmentSourceInfo]],
    summary="Configured enrichment sources",
)
async def list_sources() -> ApiResponse[List[EnrichmentSourceInfo]]:
    return ApiResponse(data=await enrichment_service.list_sources())


@router.post(
    "/company",
    response_model=ApiResponse[EnrichmentResult],
    responses={400: {"description": "No company identifier", "model": ErrorResponse}, **_UNAVAILABLE},
    summary="Enrich a company",
    description=(
        "Looks the company up by domain then name (creating it when missing). Data "
        "younger than the freshness window is returned from cache unless forceRefresh is set."
    ),
)
async def enrich_company(
    body: EnrichCompanyRequest,
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[EnrichmentResult]:
    result = await enrichment_service.enrich_company(db, body)
    message = "Company data served from cache" if result.from_cache else "Company enriched"
    return ApiResponse(data=result, message=message)


@router.get(
    "/company/{company_id}",
    response_model=ApiResponse[CompanyResponse],
    responses={404: {"description": "Company not found", "model": ErrorResponse}},
    summary="Company profile with per-source enrichment records",
)
async def get_company(
    company_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CompanyResponse]:
    return ApiResponse(data=await enrichment_service.get_company(db, company_id))


@router.post(
    "/cards/{card_id}",
    response_model=ApiResponse[CardEnrichmentResponse],
    responses={
        400: {"description": "Card has no company or website", "model": ErrorResponse},
        404: {"description": "Card not found", "model": ErrorResponse},
        **_UNAVAILABLE,
    },
    summary="Enrich the company on a card and link it",
)
async def enrich_card(
    card_id: UUID,
    body: EnrichCardRequest = EnrichCardRequest(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardEnrichmentResponse]:
    result = await enrichment_service.enrich_card(db, user, card_id, force_refresh=body.force_refresh)
    return ApiResponse(data=result, message="Card enriched")


@router.get(
    "/cards/{card_id}",
    response_model=ApiResponse[CardEnrichmentResponse],
    responses={404: {"description": "Card not found", "model": ErrorResponse}},
    summary="Enrichment state of a card",
)
async def get_card_enrichment(
    card_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[CardEnrichmentResponse]:
    return ApiResponse(data=await enrichment_service.get_card_enrichment(db, user, card_id))
