"""
NameCard Backend - Scan Service (Business Logic Orchestrator)
==============================================================

What:  Turns one uploaded card photo into a stored Card plus a queued OCR job.
How:   Composes the validator, preprocessor, Textract client, field extractor,
       storage service and OCR queue.

Orchestration Flow (POST /api/v1/scan):
    ┌──────────┐   ┌──────────┐   ┌───────────┐   ┌─────────┐   ┌──────────┐
    │ Validate │──▶│ Variants │──▶│ Textract  │──▶│ Upload  │──▶│ Card +   │
    │ (400)    │   │ (Pillow) │   │ + extract │   │ (S3)    │   │ OcrJob   │
    └──────────┘   └──────────┘   │ (422)     │   └─────────┘   │ + queue  │
                                  └───────────┘                 └──────────┘

Writes are committed one after another (card, then job). A failure after the
card commit leaves the card in place; there is no compensating rollback.
Upload failures are tolerated: the card is created without image URLs.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.exceptions import StorageError, ValidationError
from app.models.card import Card
from app.models.user import User
from app.schemas.card import CardResponse, normalize_tags
from app.schemas.scan import ExtractedDataResponse, ImageUrls, ScanResponse
from app.services.company_service import find_or_create_company
from app.services.field_extractor import ExtractedCardData, extract_fields, normalize_threshold
from app.services.image_preprocessing import DEFAULT_VARIANTS, ProcessedImage, image_preprocessor
from app.services.image_validation import get_config_for_use_case, image_validator
from app.services.multipart import MultipartFile
from app.services.ocr_job_service import ocr_job_service
from app.services.ocr_queue import ocr_queue
from app.services.storage_service import StoredObject, storage_service
from app.services.textract_service import textract_service

logger = logging.getLogger(__name__)

DEFAULT_CARD_NAME = "Scanned Contact"
SCAN_TAG = "scan"


@dataclass
class ScanResult:
    card: Card
    ocr_job_id: uuid.UUID
    ocr_job_status: str
    extracted: ExtractedCardData
    image_urls: Dict[str, Optional[str]]
    processing_time_ms: float
    warnings: List[str] = field(default_factory=list)
    stored: Dict[str, StoredObject] = field(default_factory=dict)

    def to_response(self) -> ScanResponse:
        return ScanResponse(
            card_id=self.card.id,
            ocr_job_id=self.ocr_job_id,
            ocr_job_status=self.ocr_job_status,
            card=CardResponse.model_validate(self.card),
            extracted_data=ExtractedDataResponse.model_validate(self.extracted.to_payload()),
            confidence=self.extracted.confidence,
            image_urls=ImageUrls(**self.image_urls),
            processing_time_ms=self.processing_time_ms,
            warnings=self.warnings,
            storage_metadata={name: obj.to_dict() for name, obj in self.stored.items()},
        )


def _ocr_bytes(variants: Dict[str, ProcessedImage], original: bytes) -> bytes:
    ocr_variant = variants.get("ocr")
    if ocr_variant is not None and ocr_variant.size <= settings.textract_max_bytes:
        return ocr_variant.content
    logger.info("OCR variant exceeds the text detection limit; using original bytes")
    return original


class ScanService:

    async def scan_card(
        self,
        db: AsyncSession,
        user: User,
        image: MultipartFile,
        min_confidence: Optional[float] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> ScanResult:
        """
        Raises:
            ValidationError: image rejected, or tags invalid (400)
            OCRProcessingError: no usable text (422)
            CircuitBreakerOpenError: text detection unavailable (503)
        """
        start = time.perf_counter()
        threshold = normalize_threshold(min_confidence)
        try:
            card_tags = normalize_tags([SCAN_TAG] + list(tags or []))
        except ValueError as e:
            raise ValidationError(message=str(e), field="tags")

        # ── Step 1: Validate ──────────────────────────────────────────────
        validation = image_validator.validate_image(
            image.content, image.filename, get_config_for_use_case("business-card")
        )
        if not validation.is_valid:
            raise ValidationError(
                message="; ".join(validation.errors),
                field="image",
                context={"filename": image.filename, "errors": validation.errors},
            )
        warnings: List[str] = list(validation.warnings)

        # ── Step 2: Variants ──────────────────────────────────────────────
        variants = await run_in_threadpool(
            image_preprocessor.create_variants, image.content, DEFAULT_VARIANTS
        )
        for processed in variants.values():
            warnings.extend(w for w in processed.warnings if w not in warnings)
        ocr_bytes = _ocr_bytes(variants, image.content)

        # ── Step 3: Detect text and extract fields ────────────────────────
        detection = await textract_service.detect_text(ocr_bytes)
        extracted = extract_fields(detection.lines, threshold)

        # ── Step 4: Upload (tolerated) ────────────────────────────────────
        stored: Dict[str, StoredObject] = {}
        try:
            stored = await storage_service.upload_variants(
                variants, image.filename or "card", user_id=str(user.id)
            )
        except StorageError as e:
            logger.warning("Scan continuing without stored images: %s", e.message)
            warnings.append("Images could not be stored; the card was saved without them")

        image_urls = {
            "original": stored["original"].url if "original" in stored else None,
            "processed": stored["ocr"].url if "ocr" in stored else None,
            "thumbnail": stored["thumbnail"].url if "thumbnail" in stored else None,
            "web": stored["web"].url if "web" in stored else None,
        }

        # ── Step 5: Card (+ company link), committed ──────────────────────
        card = Card(
            user_id=user.id,
            tenant_id=user.tenant_id,
            original_image_url=image_urls["original"],
            processed_image_url=image_urls["processed"],
            thumbnail_url=image_urls["thumbnail"],
            extracted_text=extracted.raw_text,
            confidence=extracted.confidence,
            name=extracted.value("name") or DEFAULT_CARD_NAME,
            title=extracted.value("title"),
            company=extracted.value("company"),
            email=extracted.normalized_email,
            phone=extracted.value("phone"),
            address=extracted.value("address"),
            website=extracted.value("website"),
            tags=card_tags,
            scan_date=datetime.now(timezone.utc),
        )
        if card.company:
            company = await find_or_create_company(db, name=card.company)
            card.company_id = company.id
        db.add(card)
        await db.flush()
        await db.commit()
        await db.refresh(card)
        logger.info("Card %s created from scan (confidence %.2f)", card.id, extracted.confidence)

        # ── Step 6: OCR job, committed, then queued ───────────────────────
        job = await ocr_job_service.create_job(
            db,
            card,
            user,
            payload={
                "source": "scan",
                "fileName": image.filename,
                "minConfidence": threshold,
                "textractLineCount": len(detection.lines),
            },
        )
        await db.commit()
        job_id, job_status = job.id, job.status
        ocr_queue.enqueue(job_id, ocr_bytes)

        return ScanResult(
            card=card,
            ocr_job_id=job_id,
            ocr_job_status=job_status,
            extracted=extracted,
            image_urls=image_urls,
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
            warnings=warnings,
            stored=stored,
        )


scan_service = ScanService()
