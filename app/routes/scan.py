"""
NameCard Backend - Scan Route Handlers
=======================================

What:  POST /api/v1/scan runs the full scan pipeline for one card photo;
       GET /api/v1/scan/jobs/{id} reports the follow-up OCR job.

Form fields (multipart/form-data):
    image          required file part
    minConfidence  optional, fraction (0.8) or percentage (80)
    tags           optional, comma-separated
"""

import logging
import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_current_user, read_multipart_form
from app.exceptions import ValidationError
from app.models.user import User
from app.schemas.card import normalize_tags
from app.schemas.common import ApiResponse, ErrorResponse
from app.schemas.ocr import OcrJobResponse
from app.schemas.scan import ScanResponse
from app.services.multipart import MultipartForm
from app.services.ocr_job_service import ocr_job_service
from app.services.scan_service import scan_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/scan", tags=["Scan"])


def _parse_confidence(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(message="minConfidence must be a number", field="minConfidence")
    if math.isinf(value):
        raise ValidationError(message="minConfidence must be finite", field="minConfidence")
    return value


@router.post(
    "",
    status_code=201,
    response_model=ApiResponse[ScanResponse],
    responses={
        400: {"description": "Invalid image or form", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        422: {"description": "No usable text found", "model": ErrorResponse},
        503: {"description": "Text detection unavailable", "model": ErrorResponse},
    },
    summary="Scan a business card",
    description=(
        "Validates the image, detects text, extracts contact fields, stores the image "
        "variants, creates the card and queues an OCR job for document analysis."
    ),
)
async def scan_card(
    form: MultipartForm = Depends(read_multipart_form),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[ScanResponse]:
    image = form.get_file("image") or form.first_file()
    if image is None:
        raise ValidationError(message="No image provided; send a file in the 'image' field", field="image")
    min_confidence = _parse_confidence(form.get_field("minConfidence"))
    try:
        tags = normalize_tags(form.get_field("tags"))
    except ValueError as e:
        raise ValidationError(message=str(e), field="tags")

    logger.info("Scan request: %s (%d bytes) by user %s", image.filename, image.size, user.id)
    result = await scan_service.scan_card(db, user, image, min_confidence=min_confidence, tags=tags)
    return ApiResponse(data=result.to_response(), message="Business card scanned")


@router.get(
    "/jobs/{job_id}",
    response_model=ApiResponse[OcrJobResponse],
    responses={404: {"description": "Job not found", "model": ErrorResponse}},
    summary="OCR job status",
)
async def get_ocr_job(
    job_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApiResponse[OcrJobResponse]:
    return ApiResponse(data=await ocr_job_service.get_job(db, user, job_id))
