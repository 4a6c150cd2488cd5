"""
NameCard Backend - OCR Job Service
===================================

What:  Creates, reads and runs OCR jobs attached to scanned cards.
How:   `run_job` drives one job through its lifecycle using Textract
       document analysis. Failures are recorded on the job; nothing is
       retried inline.

    pending → processing → completed (result)
                         ↘ failed (error_message, retry_count + 1)
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NameCardError, NotFoundError
from app.models.card import Card
from app.models.ocr_job import OcrJob
from app.models.user import User
from app.schemas.ocr import OcrJobResponse
from app.services.textract_service import textract_service

logger = logging.getLogger(__name__)


class OcrJobService:

    async def create_job(
        self, db: AsyncSession, card: Card, user: User, payload: Dict[str, Any]
    ) -> OcrJob:
        job = OcrJob(
            card_id=card.id,
            tenant_id=card.tenant_id,
            requested_by=user.id,
            status="pending",
            payload=payload,
        )
        db.add(job)
        await db.flush()
        return job

    async def get_job(self, db: AsyncSession, user: User, job_id: uuid.UUID) -> OcrJobResponse:
        """
        Raises:
            NotFoundError: unknown job or a job from another tenant
        """
        result = await db.execute(select(OcrJob).where(OcrJob.id == job_id))
        job = result.scalar_one_or_none()
        if job is None or job.tenant_id != user.tenant_id:
            raise NotFoundError(resource="ocr job", resource_id=str(job_id))
        return OcrJobResponse.model_validate(job)

    async def run_job(self, db: AsyncSession, job_id: uuid.UUID, image_bytes: bytes) -> Optional[OcrJob]:
        """
        Process one queued job. Returns the job, or None if it no longer exists.

        Provider and validation failures mark the job failed; the caller's
        session commits either outcome.
        """
        result = await db.execute(select(OcrJob).where(OcrJob.id == job_id))
        job = result.scalar_one_or_none()
        if job is None:
            logger.warning("OCR job %s vanished before processing", job_id)
            return None

        job.status = "processing"
        await db.flush()

        try:
            analysis = await textract_service.analyze_document(image_bytes)
        except NameCardError as e:
            job.status = "failed"
            job.error_message = e.message
            job.retry_count = (job.retry_count or 0) + 1
            job.completed_at = datetime.now(timezone.utc)
            await db.flush()
            logger.warning("OCR job %s failed: %s", job_id, e.message)
            return job

        job.status = "completed"
        job.result = analysis.to_dict()
        job.error_message = None
        job.completed_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info(
            "OCR job %s completed: %d lines, %d key/value pairs",
            job_id,
            len(analysis.lines),
            len(analysis.key_values),
        )
        return job


ocr_job_service = OcrJobService()
