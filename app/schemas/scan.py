"""
NameCard Backend - Scan Schemas
================================

Response of POST /api/v1/scan: the created card, the queued OCR job and the
synchronous extraction payload.
"""

import uuid
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.schemas.card import CardResponse
from app.schemas.common import ApiModel


class ExtractedFieldResponse(ApiModel):
    text: str
    confidence: float


class ExtractedDataResponse(ApiModel):
    raw_text: str
    confidence: float
    line_count: int
    name: Optional[ExtractedFieldResponse] = None
    title: Optional[ExtractedFieldResponse] = None
    company: Optional[ExtractedFieldResponse] = None
    email: Optional[ExtractedFieldResponse] = None
    phone: Optional[ExtractedFieldResponse] = None
    website: Optional[ExtractedFieldResponse] = None
    address: Optional[ExtractedFieldResponse] = None
    normalized_email: Optional[str] = None
    normalized_phone: Optional[str] = None


class ImageUrls(ApiModel):
    original: Optional[str] = None
    processed: Optional[str] = None
    thumbnail: Optional[str] = None
    web: Optional[str] = None


class ScanResponse(ApiModel):
    card_id: uuid.UUID
    ocr_job_id: uuid.UUID
    ocr_job_status: str
    card: CardResponse
    extracted_data: ExtractedDataResponse
    confidence: float
    image_urls: ImageUrls
    processing_time_ms: float
    warnings: List[str] = Field(default_factory=list)
    storage_metadata: Dict[str, Any] = Field(default_factory=dict)
