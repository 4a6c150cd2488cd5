"""
NameCard Backend - Upload Route Handlers
=========================================

What:  POST /api/v1/upload/single, POST /api/v1/upload/multiple and the local
       storage file server GET /api/v1/upload/files/{key}.
How:   The raw body is decoded by `read_multipart_form` (field `image` for
       single, `images` for multiple) and handed to ImageUploadService.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from app.dependencies import get_current_user, read_multipart_form
from app.exceptions import NotFoundError, ValidationError
from app.models.user import User
from app.schemas.common import ApiResponse, ErrorResponse
from app.schemas.upload import UploadResponse
from app.services.multipart import MultipartForm
from app.services.storage_service import storage_service
from app.services.upload_service import image_upload_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/upload", tags=["Upload"])

_ERRORS = {
    400: {"description": "Invalid image or multipart body", "model": ErrorResponse},
    401: {"description": "Missing or invalid token", "model": ErrorResponse},
    500: {"description": "Storage failure", "model": ErrorResponse},
}


@router.post(
    "/single",
    status_code=201,
    response_model=ApiResponse[UploadResponse],
    responses=_ERRORS,
    summary="Upload one card image",
    description=(
        "multipart/form-data with an `image` file part (JPEG, PNG or WebP, max 5MB). "
        "The image is validated, processed into original/ocr/thumbnail/web variants "
        "and stored."
    ),
)
async def upload_single(
    form: MultipartForm = Depends(read_multipart_form),
    user: User = Depends(get_current_user),
) -> ApiResponse[UploadResponse]:
    image = form.get_file("image") or form.first_file()
    if image is None:
        raise ValidationError(message="No image provided; send a file in the 'image' field", field="image")
    logger.info("Single upload: %s (%d bytes)", image.filename, image.size)
    result = await image_upload_service.upload_single(image, user_id=str(user.id))
    return ApiResponse(data=result, message="Image uploaded")


@router.post(
    "/multiple",
    status_code=201,
    response_model=ApiResponse[UploadResponse],
    responses=_ERRORS,
    summary="Upload several card images",
    description="Same as /single for up to MAX_UPLOAD_FILES files in the `images` field.",
)
async def upload_multiple(
    form: MultipartForm = Depends(read_multipart_form),
    user: User = Depends(get_current_user),
) -> ApiResponse[UploadResponse]:
    images = form.get_files("images") or list(form.files)
    if not images:
        raise ValidationError(message="No images provided; send files in the 'images' field", field="images")
    result = await image_upload_service.upload_multiple(images, user_id=str(user.id))
    message = f"{result.successful} of {result.total_files} images uploaded"
    return ApiResponse(data=result, message=message)


@router.get(
    "/files/{key:path}",
    summary="Serve a stored image (local storage backend)",
    responses={
        200: {"description": "Image file"},
        400: {"description": "Invalid path", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
)
async def serve_file(key: str) -> FileResponse:
    """
    Security:
        - The key is resolved inside STORAGE_ROOT; `..` escapes are rejected
        - Only the local backend serves files; S3 objects use their own URLs
    """
    if storage_service.backend != "local":
        raise NotFoundError(resource="file", resource_id=key)
    full_path = storage_service.local_path(key)
    if not full_path.is_file():
        raise NotFoundError(resource="file", resource_id=key)
    return FileResponse(
        path=str(full_path),
        headers={"Cache-Control": "public, max-age=86400, immutable"},
    )
