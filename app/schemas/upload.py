"""NameCard Backend - Upload schemas (single and multiple image uploads)."""

from typing import Any, Dict, List, Optional

from pydantic import Field

from app.schemas.common import ApiModel


class StoredVariant(ApiModel):
    key: str
    url: str
    size: int
    content_type: str
    width: int
    height: int
    format: str
    compression_ratio: float
    optimizations: List[str] = Field(default_factory=list)


class UploadedImage(ApiModel):
    filename: str
    original_size: int
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Validation metadata")
    warnings: List[str] = Field(default_factory=list)
    variants: Dict[str, StoredVariant] = Field(default_factory=dict)


class RejectedImage(ApiModel):
    filename: Optional[str] = None
    errors: List[str]


class UploadResponse(ApiModel):
    files: List[UploadedImage] = Field(default_factory=list)
    rejected: List[RejectedImage] = Field(default_factory=list)
    total_files: int
    successful: int
    processing_time_ms: float
    storage_backend: str
