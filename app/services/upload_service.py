"""
NameCard Backend - Image Upload Service
========================================

What:  Validate → variants → store workflow behind /api/v1/upload.
How:   Composes ImageValidator (business-card profile), ImagePreprocessor
       (run in the threadpool, it is CPU-bound) and StorageService.

Single upload: any validation error is a 400.
Multiple upload: the batch size limit is a 400; individual invalid files are
reported under `rejected` while the valid ones are still stored.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.exceptions import ValidationError
from app.schemas.upload import RejectedImage, StoredVariant, UploadedImage, UploadResponse
from app.services.image_preprocessing import DEFAULT_VARIANTS, image_preprocessor
from app.services.image_validation import (
    ImageValidationResult,
    get_config_for_use_case,
    image_validator,
)
from app.services.multipart import MultipartFile
from app.services.storage_service import storage_service

logger = logging.getLogger(__name__)


class ImageUploadService:

    async def upload_single(self, image: MultipartFile, user_id: Optional[str] = None) -> UploadResponse:
        """
        Raises:
            ValidationError: image failed validation
            StorageError: a variant could not be stored
        """
        start = time.perf_counter()
        config = get_config_for_use_case("business-card")
        validation = image_validator.validate_image(image.content, image.filename, config)
        if not validation.is_valid:
            raise ValidationError(
                message="; ".join(validation.errors),
                field="image",
                context={"filename": image.filename, "errors": validation.errors},
            )

        uploaded = await self._store(image, validation, user_id)
        return UploadResponse(
            files=[uploaded],
            total_files=1,
            successful=1,
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
            storage_backend=storage_service.backend,
        )

    async def upload_multiple(
        self, images: Sequence[MultipartFile], user_id: Optional[str] = None
    ) -> UploadResponse:
        start = time.perf_counter()
        config = get_config_for_use_case("business-card")
        if len(images) > settings.max_upload_files:
            raise ValidationError(
                message=f"Too many files: {len(images)} provided, maximum is {settings.max_upload_files}",
                field="images",
                context={"max_files": settings.max_upload_files},
            )
        batch = image_validator.validate_images([(f.content, f.filename) for f in images], config)

        uploaded: List[UploadedImage] = []
        rejected: List[RejectedImage] = []
        for image, validation in zip(images, batch.results):
            if not validation.is_valid:
                rejected.append(RejectedImage(filename=image.filename, errors=validation.errors))
                continue
            uploaded.append(await self._store(image, validation, user_id))

        logger.info(
            "Batch upload: %d stored, %d rejected of %d", len(uploaded), len(rejected), len(images)
        )
        return UploadResponse(
            files=uploaded,
            rejected=rejected,
            total_files=len(images),
            successful=len(uploaded),
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
            storage_backend=storage_service.backend,
        )

    async def _store(
        self, image: MultipartFile, validation: ImageValidationResult, user_id: Optional[str]
    ) -> UploadedImage:
        filename = image.filename or "upload"
        variants = await run_in_threadpool(image_preprocessor.create_variants, image.content, DEFAULT_VARIANTS)
        stored = await storage_service.upload_variants(variants, filename, user_id=user_id)

        summaries: Dict[str, StoredVariant] = {}
        warnings: List[str] = list(validation.warnings)
        for name, processed in variants.items():
            obj = stored[name]
            summaries[name] = StoredVariant(
                key=obj.key,
                url=obj.url,
                size=obj.size,
                content_type=obj.content_type,
                width=processed.width,
                height=processed.height,
                format=processed.format,
                compression_ratio=processed.compression_ratio,
                optimizations=processed.optimizations,
            )
            warnings.extend(w for w in processed.warnings if w not in warnings)

        metadata: Dict[str, Any] = validation.metadata.to_dict() if validation.metadata else {}
        return UploadedImage(
            filename=filename,
            original_size=image.size,
            metadata=metadata,
            warnings=warnings,
            variants=summaries,
        )


image_upload_service = ImageUploadService()
