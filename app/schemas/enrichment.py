"""
NameCard Backend - Enrichment Schemas
======================================

Requests and responses for company enrichment. `EnrichmentResult` mirrors
the per-source breakdown returned by EnrichmentService.enrich_company.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, model_validator

from app.schemas.common import ApiModel


class EnrichCompanyRequest(ApiModel):
    company_name: Optional[str] = Field(default=None, max_length=200)
    domain: Optional[str] = Field(default=None, max_length=255)
    website: Optional[str] = Field(default=None, max_length=500)
    force_refresh: bool = Field(default=False, description="Ignore the freshness window")

    @model_validator(mode="after")
    def require_identifier(self) -> "EnrichCompanyRequest":
        if not (self.company_name or self.domain or self.website):
            raise ValueError("One of companyName, domain or website is required")
        return self


class EnrichCardRequest(ApiModel):
    force_refresh: bool = Field(default=False)


class SourceStatus(ApiModel):
    status: str = Field(description="success, cached, failed")
    confidence: Optional[float] = None
    data_points: int = 0
    error: Optional[str] = None


class EnrichmentResult(ApiModel):
    success: bool
    company_id: uuid.UUID
    enrichment_data: Dict[str, Any] = Field(default_factory=dict)
    sources: Dict[str, SourceStatus] = Field(default_factory=dict)
    overall_confidence: Optional[float] = None
    from_cache: bool = False
    processing_time_ms: float = 0.0


class CompanyEnrichmentResponse(ApiModel):
    source: str
    status: str
    confidence: Optional[float] = None
    enriched_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0


class CompanyResponse(ApiModel):
    id: uuid.UUID
    name: str
    domain: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None
    headquarters: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None
    founded: Optional[int] = None
    employee_count: Optional[int] = None
    linkedin_url: Optional[str] = None
    twitter_handle: Optional[str] = None
    technologies: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    overall_enrichment_score: Optional[float] = None
    last_enrichment_date: Optional[datetime] = None
    enrichments: List[CompanyEnrichmentResponse] = Field(default_factory=list)


class CardEnrichmentResponse(ApiModel):
    card_id: uuid.UUID
    company: Optional[CompanyResponse] = None
    result: Optional[EnrichmentResult] = None


class EnrichmentSourceInfo(ApiModel):
    name: str
    enabled: bool
    configured: bool
    status: str
    description: str
