"""
NameCard Backend - Image Validation Service
============================================

What:  Validates uploaded images against a use-case profile.
Why:   Rejects oversize, undecodable, oddly shaped or disguised files before
       any preprocessing, storage or OCR cost is paid.
How:   Pillow decodes the header (format, dimensions, mode, DPI) without
       loading pixel data; libmagic (python-magic) sniffs the MIME type to
       confirm the content matches the decoded format; a small pattern scan
       catches script payloads. Dimensions large enough to trip Pillow's
       decompression-bomb guard are reported as a dimension error.

Profiles (get_config_for_use_case):
    default         10MB, 32-4096px, aspect ≤ 10
    business-card   5MB, 200-2048px, aspect ≤ 2.5, lenient security
    profile-avatar  2MB, 64-1024px, square
    document        20MB, 100-8192px, aspect ≤ 5
"""

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import magic
from PIL import Image, UnidentifiedImageError

from app.exceptions import ValidationError

logger = logging.getLogger(__name__)

MB = 1024 * 1024

# Pillow format name → canonical format names used by the profiles
_PIL_FORMATS = {
    "JPEG": "jpeg",
    "MPO": "jpeg",
    "PNG": "png",
    "GIF": "gif",
    "WEBP": "webp",
    "BMP": "bmp",
    "TIFF": "tiff",
}

# libmagic MIME type → canonical format name
_MIME_FORMATS = {
    "image/jpeg": "jpeg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/x-ms-bmp": "bmp",
    "image/tiff": "tiff",
}

_EXTENSION_FORMATS = {
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
    ".png": "png",
    ".gif": "gif",
    ".webp": "webp",
    ".bmp": "bmp",
    ".tif": "tiff",
    ".tiff": "tiff",
}

SUSPICIOUS_PATTERNS = (b"<script", b"javascript:", b"<?php", b"<%")

USUAL_MODES = {"1", "L", "LA", "P", "RGB", "RGBA", "CMYK", "YCbCr", "I;16"}


@dataclass
class ImageValidationConfig:
    max_file_size: int = 10 * MB
    max_width: int = 4096
    max_height: int = 4096
    min_width: int = 32
    min_height: int = 32
    allowed_formats: Tuple[str, ...] = ("jpeg", "jpg", "png", "gif", "webp", "bmp", "tiff")
    max_files: int = 5
    max_aspect_ratio: float = 10.0
    require_square: bool = False
    lenient_security: bool = False


@dataclass
class ImageMetadata:
    format: str
    width: int
    height: int
    size: int
    aspect_ratio: float
    has_alpha: bool
    channels: int
    mode: str
    density: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "width": self.width,
            "height": self.height,
            "size": self.size,
            "aspectRatio": self.aspect_ratio,
            "hasAlpha": self.has_alpha,
            "channels": self.channels,
            "mode": self.mode,
            "density": self.density,
        }


@dataclass
class ImageValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Optional[ImageMetadata] = None
    filename: Optional[str] = None


@dataclass
class BatchValidationResult:
    overall_valid: bool
    results: List[ImageValidationResult]
    total_files: int
    valid_files: int


USE_CASE_CONFIGS: Dict[str, ImageValidationConfig] = {
    "default": ImageValidationConfig(),
    "business-card": ImageValidationConfig(
        max_file_size=5 * MB,
        max_width=2048,
        max_height=2048,
        min_width=200,
        min_height=200,
        allowed_formats=("jpeg", "jpg", "png", "webp"),
        max_files=5,
        max_aspect_ratio=2.5,
        lenient_security=True,
    ),
    "profile-avatar": ImageValidationConfig(
        max_file_size=2 * MB,
        max_width=1024,
        max_height=1024,
        min_width=64,
        min_height=64,
        allowed_formats=("jpeg", "jpg", "png", "webp"),
        max_files=1,
        max_aspect_ratio=1.0,
        require_square=True,
    ),
    "document": ImageValidationConfig(
        max_file_size=20 * MB,
        max_width=8192,
        max_height=8192,
        min_width=100,
        min_height=100,
        allowed_formats=("jpeg", "jpg", "png", "webp", "tiff"),
        max_files=10,
        max_aspect_ratio=5.0,
    ),
}


def get_config_for_use_case(use_case: str) -> ImageValidationConfig:
    """Profile for a use case; unknown names fall back to the default profile."""
    return USE_CASE_CONFIGS.get(use_case, USE_CASE_CONFIGS["default"])


def detect_signature(content: bytes) -> Optional[str]:
    """Image format libmagic detects in the content, if it is one we know."""
    mime_type = magic.from_buffer(content[:4096], mime=True)
    return _MIME_FORMATS.get(mime_type)


def _format_size(size: int) -> str:
    return f"{size / MB:.1f}MB"


class ImageValidator:
    """
    Stateless validator; all checks run and every problem is reported.

    Usage:
        result = image_validator.validate_image(content, "card.jpg",
                                                get_config_for_use_case("business-card"))
        if not result.is_valid: ...
    """

    def read_metadata(self, content: bytes) -> ImageMetadata:
        """
        Decode image headers with Pillow.

        Raises:
            ValidationError: bytes are not a decodable image, or dimensions
                trip the decompression-bomb guard
        """
        try:
            with Image.open(io.BytesIO(content)) as image:
                image.verify()
            # verify() leaves the image unusable; reopen for attributes
            with Image.open(io.BytesIO(content)) as image:
                width, height = image.size
                mode = image.mode
                bands = image.getbands()
                pil_format = image.format or ""
                dpi = image.info.get("dpi")
                has_transparency = "transparency" in image.info
        except Image.DecompressionBombError as e:
            raise ValidationError(
                message="Image dimensions exceed the maximum Pillow will decode",
                field="image",
                context={"reason": str(e)},
            )
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise ValidationError(
                message="File is not a valid image",
                field="image",
                context={"reason": str(e)},
            )

        density = None
        if isinstance(dpi, tuple) and dpi:
            density = float(dpi[0])

        return ImageMetadata(
            format=_PIL_FORMATS.get(pil_format, pil_format.lower()),
            width=width,
            height=height,
            size=len(content),
            aspect_ratio=round(width / height, 2) if height else 0.0,
            has_alpha="A" in bands or (mode == "P" and has_transparency),
            channels=len(bands),
            mode=mode,
            density=density,
        )

    def validate_image(
        self,
        content: bytes,
        filename: Optional[str] = None,
        config: Optional[ImageValidationConfig] = None,
    ) -> ImageValidationResult:
        config = config or get_config_for_use_case("default")
        result = ImageValidationResult(is_valid=True, filename=filename)
        errors, warnings = result.errors, result.warnings

        if not content:
            errors.append("File is empty")
            result.is_valid = False
            return result

        size = len(content)
        if size > config.max_file_size:
            errors.append(
                f"File size {_format_size(size)} exceeds maximum of {_format_size(config.max_file_size)}"
            )
        elif size > 5 * MB:
            warnings.append(f"Large file ({_format_size(size)}) may slow down processing")

        if filename:
            extension = Path(filename).suffix.lower()
            ext_format = _EXTENSION_FORMATS.get(extension)
            if extension and (ext_format is None or ext_format not in config.allowed_formats):
                errors.append(
                    f"File extension '{extension}' is not allowed. "
                    f"Allowed formats: {', '.join(config.allowed_formats)}"
                )

        self._scan_for_payloads(content, config, errors, warnings)

        try:
            metadata = self.read_metadata(content)
        except ValidationError as e:
            errors.append(e.message)
            result.is_valid = False
            return result

        result.metadata = metadata

        if metadata.format not in config.allowed_formats:
            errors.append(
                f"Image format '{metadata.format}' is not allowed. "
                f"Allowed formats: {', '.join(config.allowed_formats)}"
            )

        signature = detect_signature(content)
        if signature is None or signature != metadata.format:
            errors.append("File content does not match its declared image format")

        self._check_dimensions(metadata, config, errors)
        self._check_quality(metadata, warnings)

        result.is_valid = not errors
        if errors:
            logger.info(
                "Image validation failed for %s: %s", filename or "upload", "; ".join(errors)
            )
        return result

    def validate_images(
        self,
        files: Sequence[Tuple[bytes, Optional[str]]],
        config: Optional[ImageValidationConfig] = None,
    ) -> BatchValidationResult:
        """
        Validate a batch of (content, filename) pairs.

        Raises:
            ValidationError: more files than the profile allows
        """
        config = config or get_config_for_use_case("default")
        if not files:
            raise ValidationError(message="No images provided", field="images")
        if len(files) > config.max_files:
            raise ValidationError(
                message=f"Too many files: {len(files)} provided, maximum is {config.max_files}",
                field="images",
                context={"max_files": config.max_files},
            )

        results = [self.validate_image(content, name, config) for content, name in files]
        valid = sum(1 for r in results if r.is_valid)
        return BatchValidationResult(
            overall_valid=valid == len(results),
            results=results,
            total_files=len(results),
            valid_files=valid,
        )

    def _scan_for_payloads(
        self,
        content: bytes,
        config: ImageValidationConfig,
        errors: List[str],
        warnings: List[str],
    ) -> None:
        head = content[:1024].lower()
        for pattern in SUSPICIOUS_PATTERNS:
            if pattern in head:
                message = f"Suspicious content pattern detected: {pattern.decode()}"
                if config.lenient_security:
                    warnings.append(message)
                else:
                    errors.append(message)

    def _check_dimensions(
        self, metadata: ImageMetadata, config: ImageValidationConfig, errors: List[str]
    ) -> None:
        width, height = metadata.width, metadata.height
        if width > config.max_width or height > config.max_height:
            errors.append(
                f"Image dimensions {width}x{height} exceed maximum of "
                f"{config.max_width}x{config.max_height}"
            )
        if width < config.min_width or height < config.min_height:
            errors.append(
                f"Image dimensions {width}x{height} are below minimum of "
                f"{config.min_width}x{config.min_height}"
            )
        if width and height:
            ratio = max(width / height, height / width)
            if ratio > config.max_aspect_ratio:
                errors.append(
                    f"Aspect ratio {ratio:.2f} exceeds maximum of {config.max_aspect_ratio}"
                )
        if config.require_square and width != height:
            errors.append("Image must be square")

    def _check_quality(self, metadata: ImageMetadata, warnings: List[str]) -> None:
        pixels = metadata.width * metadata.height
        if pixels > 16_000_000:
            warnings.append("Very high resolution image; it will be downscaled")
        if metadata.mode not in USUAL_MODES:
            warnings.append(f"Unusual color mode '{metadata.mode}'")
        if pixels:
            bytes_per_pixel = metadata.size / pixels
            if bytes_per_pixel < 0.1:
                warnings.append("Image appears heavily compressed; OCR accuracy may suffer")
            elif bytes_per_pixel > 10:
                warnings.append("Image is unusually large for its dimensions")


image_validator = ImageValidator()
