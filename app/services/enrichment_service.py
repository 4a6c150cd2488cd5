"""
NameCard Backend - Company Enrichment Service
==============================================

What:  Finds or creates the Company, consults the enrichment source when the
       stored data is stale, and merges results into the Company profile.
How:   One CompanyEnrichment row per (company, source):

    fresh 'enriched' row and no forceRefresh → cached data, source not called
    otherwise → call source
        success → upsert row (enriched, confidence, data, enriched_at),
                  merge into Company, update score and last enrichment date
        failure → upsert row (failed, error_message, retry_count + 1),
                  commit, raise EnrichmentServiceError (503)

Merge rules: scalars are last-write-wins when the source returned a value;
lists are unions that keep existing order.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import EnrichmentServiceError, NotFoundError, ValidationError
from app.models.card import Card
from app.models.company import Company
from app.models.enrichment import CompanyEnrichment
from app.models.user import User
from app.schemas.enrichment import (
    CardEnrichmentResponse,
    CompanyEnrichmentResponse,
    CompanyResponse,
    EnrichCompanyRequest,
    EnrichmentResult,
    EnrichmentSourceInfo,
    SourceStatus,
)
from app.services.card_service import card_service
from app.services.company_service import domain_from_url, find_or_create_company
from app.services.enrichment_sources import (
    EnrichmentSource,
    count_data_points,
    is_dummy_api_key,
    perplexity_source,
)

logger = logging.getLogger(__name__)

# Enrichment data key → Company column
SCALAR_FIELDS = {
    "description": "description",
    "industry": "industry",
    "website": "website",
    "headquarters": "headquarters",
    "founded": "founded",
    "employeeCount": "employee_count",
    "linkedinUrl": "linkedin_url",
    "twitterHandle": "twitter_handle",
    "logoUrl": "logo_url",
}
LIST_FIELDS = {"technologies": "technologies", "keywords": "keywords"}


def size_band(employee_count: Optional[int]) -> Optional[str]:
    if not employee_count or employee_count < 1:
        return None
    for upper, label in ((10, "1-10"), (50, "11-50"), (200, "51-200"), (500, "201-500"), (1000, "501-1000"), (5000, "1001-5000")):
        if employee_count <= upper:
            return label
    return "5000+"


def merge_list(existing: Optional[Iterable[str]], incoming: Optional[Iterable[Any]]) -> List[str]:
    merged = list(existing or [])
    seen = {item.lower() for item in merged}
    for item in incoming or []:
        if not isinstance(item, str) or not item.strip():
            continue
        if item.strip().lower() not in seen:
            seen.add(item.strip().lower())
            merged.append(item.strip())
    return merged


def merge_into_company(company: Company, data: Dict[str, Any], confidence: float) -> None:
    """Apply enrichment data to the Company profile in place."""
    for key, column in SCALAR_FIELDS.items():
        value = data.get(key)
        if value in (None, "", []):
            continue
        if column in ("founded", "employee_count"):
            try:
                value = int(value)
            except (TypeError, ValueError):
                continue
        setattr(company, column, value)
    for key, column in LIST_FIELDS.items():
        setattr(company, column, merge_list(getattr(company, column), data.get(key)))
    if not company.domain and company.website:
        company.domain = domain_from_url(company.website)
    company.size = size_band(company.employee_count) or company.size
    company.overall_enrichment_score = confidence
    company.last_enrichment_date = datetime.now(timezone.utc)


class EnrichmentService:
    """
    Args:
        source: enrichment source (defaults to the Perplexity source)
    """

    def __init__(self, source: Optional[EnrichmentSource] = None):
        self.source = source or perplexity_source

    async def enrich_company(self, db: AsyncSession, request: EnrichCompanyRequest) -> EnrichmentResult:
        """
        Raises:
            ValidationError: no usable company identifier
            EnrichmentServiceError: the source failed (failure already committed)
        """
        start = time.perf_counter()
        domain = request.domain or domain_from_url(request.website)
        company = await find_or_create_company(
            db, name=request.company_name, domain=domain, website=request.website
        )
        existing = await self._get_existing_enrichment(db, company.id)

        if existing is not None and not request.force_refresh and existing.is_fresh(
            settings.enrichment_freshness_days
        ):
            logger.info("Enrichment for company %s served from cache", company.id)
            data = existing.raw_data or {}
            return EnrichmentResult(
                success=True,
                company_id=company.id,
                enrichment_data=data,
                sources={
                    self.source.name: SourceStatus(
                        status="cached",
                        confidence=existing.confidence,
                        data_points=count_data_points(data),
                    )
                },
                overall_confidence=existing.confidence,
                from_cache=True,
                processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
            )

        try:
            outcome = await self.source.enrich_company(company.name, domain=company.domain, website=request.website)
        except EnrichmentServiceError as e:
            await self._record_failure(db, company, existing, e.message)
            raise

        now = datetime.now(timezone.utc)
        if existing is None:
            existing = CompanyEnrichment(company_id=company.id, source=self.source.name, retry_count=0)
            db.add(existing)
        existing.status = "enriched"
        existing.confidence = outcome.confidence
        existing.raw_data = outcome.data
        existing.enriched_at = now
        existing.error_message = None
        merge_into_company(company, outcome.data, outcome.confidence)
        await db.flush()

        logger.info(
            "Company %s enriched by %s (confidence %s, %d data points)",
            company.id,
            self.source.name,
            outcome.confidence,
            outcome.data_points,
        )
        return EnrichmentResult(
            success=True,
            company_id=company.id,
            enrichment_data=outcome.data,
            sources={
                self.source.name: SourceStatus(
                    status="success", confidence=outcome.confidence, data_points=outcome.data_points
                )
            },
            overall_confidence=outcome.confidence,
            from_cache=False,
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    async def enrich_card(
        self, db: AsyncSession, user: User, card_id: uuid.UUID, force_refresh: bool = False
    ) -> CardEnrichmentResponse:
        """
        Raises:
            NotFoundError: card missing or not owned
            ValidationError: card has neither a company name nor a website
        """
        card = await card_service.get_owned_card(db, user, card_id)
        domain = domain_from_url(card.website)
        if not card.company and not domain:
            raise ValidationError(
                message="Card has no company name or website to enrich", field="company"
            )

        result = await self.enrich_company(
            db,
            EnrichCompanyRequest(
                company_name=card.company,
                domain=domain,
                website=card.website,
                force_refresh=force_refresh,
            ),
        )
        card.company_id = result.company_id
        card.last_enrichment_date = datetime.now(timezone.utc)
        await db.flush()

        company = await self._load_company(db, result.company_id)
        return CardEnrichmentResponse(
            card_id=card.id,
            company=await self._company_response(db, company),
            result=result,
        )

    async def get_company(self, db: AsyncSession, company_id: uuid.UUID) -> CompanyResponse:
        company = await self._load_company(db, company_id)
        return await self._company_response(db, company)

    async def get_card_enrichment(
        self, db: AsyncSession, user: User, card_id: uuid.UUID
    ) -> CardEnrichmentResponse:
        card = await card_service.get_owned_card(db, user, card_id)
        company = None
        if card.company_id:
            company = await self._company_response(db, await self._load_company(db, card.company_id))
        return CardEnrichmentResponse(card_id=card.id, company=company)

    async def list_sources(self) -> List[EnrichmentSourceInfo]:
        api_key = getattr(self.source, "api_key", None)
        return [
            EnrichmentSourceInfo(
                name=self.source.name,
                enabled=self.source.is_enabled(),
                configured=not is_dummy_api_key(api_key),
                status=await self.source.health_check(),
                description=self.source.description,
            )
        ]

    async def _get_existing_enrichment(
        self, db: AsyncSession, company_id: uuid.UUID
    ) -> Optional[CompanyEnrichment]:
        result = await db.execute(
            select(CompanyEnrichment).where(
                CompanyEnrichment.company_id == company_id,
                CompanyEnrichment.source == self.source.name,
            )
        )
        return result.scalar_one_or_none()

    async def _record_failure(
        self,
        db: AsyncSession,
        company: Company,
        existing: Optional[CompanyEnrichment],
        message: str,
    ) -> None:
        if existing is None:
            existing = CompanyEnrichment(company_id=company.id, source=self.source.name, retry_count=0)
            db.add(existing)
        existing.status = "failed"
        existing.error_message = message
        existing.retry_count = (existing.retry_count or 0) + 1
        # The request session rolls back on the raised error
        await db.commit()
        logger.warning(
            "Enrichment of company %s by %s failed (attempt %d): %s",
            company.id,
            self.source.name,
            existing.retry_count,
            message,
        )

    async def _load_company(self, db: AsyncSession, company_id: uuid.UUID) -> Company:
        result = await db.execute(select(Company).where(Company.id == company_id))
        company = result.scalar_one_or_none()
        if company is None:
            raise NotFoundError(resource="company", resource_id=str(company_id))
        return company

    async def _company_response(self, db: AsyncSession, company: Company) -> CompanyResponse:
        result = await db.execute(
            select(CompanyEnrichment)
            .where(CompanyEnrichment.company_id == company.id)
            .order_by(CompanyEnrichment.source)
        )
        values = {column.key: getattr(company, column.key) for column in Company.__table__.columns}
        values["technologies"] = values.get("technologies") or []
        values["keywords"] = values.get("keywords") or []
        values["enrichments"] = [
            CompanyEnrichmentResponse.model_validate(row) for row in result.scalars().all()
        ]
        return CompanyResponse(**values)


enrichment_service = EnrichmentService()
