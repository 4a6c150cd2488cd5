"""
NameCard Backend - Image Preprocessing Service
===============================================

What:  Produces purpose-specific derivatives (variants) of an uploaded image.
How:   Pillow pipeline per variant:

    EXIF auto-rotate → fit inside max bounds (never enlarge) →
    purpose enhancements → strip metadata → encode (format, quality)

Purposes:
    storage       jpeg q85, 2048x2048, mild sharpen
    ocr           jpeg q95, 3000x3000, grayscale + autocontrast + sharpen
    thumbnail     webp q75, 300x300, mild sharpen
    avatar        webp q80, 512x512
    web-display   webp q80, 1920x1080, mild sharpen

The methods are CPU-bound and synchronous; async callers run them through
starlette's threadpool.
"""

import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from app.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOptions:
    purpose: str = "storage"
    quality: int = 85
    max_width: int = 2048
    max_height: int = 2048
    format: str = "jpeg"  # jpeg, png, webp or auto
    optimize: bool = True
    enhance: bool = True
    strip_metadata: bool = True


PURPOSE_DEFAULTS: Dict[str, ProcessingOptions] = {
    "storage": ProcessingOptions("storage", 85, 2048, 2048, "jpeg", True),
    "ocr": ProcessingOptions("ocr", 95, 3000, 3000, "jpeg", False),
    "thumbnail": ProcessingOptions("thumbnail", 75, 300, 300, "webp", True),
    "avatar": ProcessingOptions("avatar", 80, 512, 512, "webp", True),
    "web-display": ProcessingOptions("web-display", 80, 1920, 1080, "webp", True),
}

# Variant name → purpose used by the upload and scan pipelines
DEFAULT_VARIANTS: Dict[str, str] = {
    "original": "storage",
    "ocr": "ocr",
    "thumbnail": "thumbnail",
    "web": "web-display",
}

CONTENT_TYPES = {"jpeg": "image/jpeg", "png": "image/png", "webp": "image/webp"}
EXTENSIONS = {"jpeg": ".jpg", "png": ".png", "webp": ".webp"}


@dataclass
class ProcessedImage:
    content: bytes
    format: str
    width: int
    height: int
    original_size: int
    original_format: str
    original_width: int
    original_height: int
    processing_time_ms: float
    optimizations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.format, "application/octet-stream")

    @property
    def extension(self) -> str:
        return EXTENSIONS.get(self.format, ".bin")

    @property
    def compression_ratio(self) -> float:
        if not self.size:
            return 0.0
        return round(self.original_size / self.size, 2)

    def summary(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "originalSize": self.original_size,
            "originalFormat": self.original_format,
            "compressionRatio": self.compression_ratio,
            "processingTimeMs": self.processing_time_ms,
            "optimizations": list(self.optimizations),
            "warnings": list(self.warnings),
        }


@dataclass
class BatchItemResult:
    index: int
    success: bool
    image: Optional[ProcessedImage] = None
    error: Optional[str] = None


def get_options_for_purpose(purpose: str, **overrides: Any) -> ProcessingOptions:
    """Purpose defaults with per-call overrides (unknown purposes use storage)."""
    base = PURPOSE_DEFAULTS.get(purpose, PURPOSE_DEFAULTS["storage"])
    values = dict(base.__dict__)
    values.update({k: v for k, v in overrides.items() if v is not None})
    values["purpose"] = purpose
    return ProcessingOptions(**values)


def _resolve_format(options: ProcessingOptions, source_format: str) -> str:
    if options.format != "auto":
        return "jpeg" if options.format == "jpg" else options.format
    if options.purpose == "ocr":
        return "jpeg"
    if source_format == "png":
        return "webp" if options.purpose == "web-display" else "png"
    if options.purpose in ("thumbnail", "web-display"):
        return "webp"
    return "jpeg"


class ImagePreprocessor:
    """Stateless Pillow pipeline; one instance shared process-wide."""

    def process_image(
        self, content: bytes, options: Optional[ProcessingOptions] = None
    ) -> ProcessedImage:
        """
        Run the full pipeline for one image.

        Raises:
            ValidationError: content is not a decodable image
        """
        options = options or get_options_for_purpose("storage")
        start = time.perf_counter()
        optimizations: List[str] = []
        warnings: List[str] = []

        try:
            source = Image.open(io.BytesIO(content))
            source.load()
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
            raise ValidationError(
                message="Image could not be decoded for processing",
                field="image",
                context={"reason": str(e)},
            )

        source_format = (source.format or "").lower()
        if source_format == "mpo":
            source_format = "jpeg"
        original_width, original_height = source.size

        orientation = source.getexif().get(0x0112, 1)
        image = ImageOps.exif_transpose(source)
        if orientation not in (None, 1):
            optimizations.append("auto-rotated")

        image, resized = self._resize(image, options)
        if resized:
            optimizations.append(f"resized to {image.width}x{image.height}")
        elif original_width < 300 or original_height < 300:
            warnings.append("Image is small; text detection may be unreliable")

        output_format = _resolve_format(options, source_format)
        if options.enhance:
            image = self._enhance(image, options.purpose, optimizations)

        image = self._prepare_mode(image, output_format)
        encoded = self._encode(image, output_format, options)
        if options.strip_metadata:
            optimizations.append("metadata stripped")

        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        processed = ProcessedImage(
            content=encoded,
            format=output_format,
            width=image.width,
            height=image.height,
            original_size=len(content),
            original_format=source_format,
            original_width=original_width,
            original_height=original_height,
            processing_time_ms=elapsed_ms,
            optimizations=optimizations,
            warnings=warnings,
        )
        logger.debug(
            "Processed image for %s: %dx%d %s, %d → %d bytes in %.1fms",
            options.purpose,
            processed.width,
            processed.height,
            output_format,
            processed.original_size,
            processed.size,
            elapsed_ms,
        )
        return processed

    def create_variants(
        self, content: bytes, variants: Optional[Mapping[str, str]] = None
    ) -> Dict[str, ProcessedImage]:
        """Process one image once per {variant name: purpose}."""
        variants = variants or DEFAULT_VARIANTS
        return {
            name: self.process_image(content, get_options_for_purpose(purpose))
            for name, purpose in variants.items()
        }

    def process_batch(
        self, images: Sequence[bytes], options: Optional[ProcessingOptions] = None
    ) -> List[BatchItemResult]:
        """Process many images; a failure is recorded per item, not raised."""
        results = []
        for index, content in enumerate(images):
            try:
                results.append(
                    BatchItemResult(index=index, success=True, image=self.process_image(content, options))
                )
            except ValidationError as e:
                logger.warning("Batch item %d failed: %s", index, e.message)
                results.append(BatchItemResult(index=index, success=False, error=e.message))
        return results

    def _resize(self, image: Image.Image, options: ProcessingOptions) -> Tuple[Image.Image, bool]:
        if image.width <= options.max_width and image.height <= options.max_height:
            return image, False
        resized = image.copy()
        resized.thumbnail((options.max_width, options.max_height), Image.Resampling.LANCZOS)
        return resized, True

    def _enhance(self, image: Image.Image, purpose: str, optimizations: List[str]) -> Image.Image:
        if purpose == "ocr":
            image = ImageOps.grayscale(image)
            image = ImageOps.autocontrast(image)
            image = image.filter(ImageFilter.SHARPEN)
            optimizations.extend(["grayscale", "normalized", "sharpened"])
        elif purpose in ("storage", "thumbnail", "web-display"):
            image = image.filter(ImageFilter.UnsharpMask(radius=1, percent=50, threshold=3))
            optimizations.append("mild sharpen")
        return image

    def _prepare_mode(self, image: Image.Image, output_format: str) -> Image.Image:
        if output_format == "jpeg":
            if image.mode in ("RGBA", "LA", "P"):
                image = image.convert("RGBA")
                background = Image.new("RGB", image.size, (255, 255, 255))
                background.paste(image, mask=image.getchannel("A"))
                return background
            if image.mode not in ("RGB", "L"):
                return image.convert("RGB")
        elif image.mode not in ("RGB", "RGBA", "L", "LA"):
            return image.convert("RGBA" if "A" in image.getbands() else "RGB")
        return image

    def _encode(self, image: Image.Image, output_format: str, options: ProcessingOptions) -> bytes:
        buffer = io.BytesIO()
        save_kwargs: Dict[str, Any] = {}
        if output_format == "jpeg":
            save_kwargs.update(quality=options.quality, optimize=options.optimize, progressive=True)
        elif output_format == "webp":
            save_kwargs.update(quality=options.quality, method=4 if options.optimize else 0)
        elif output_format == "png":
            save_kwargs.update(optimize=options.optimize)
        # Saving without exif/icc arguments drops source metadata
        image.save(buffer, format=output_format.upper(), **save_kwargs)
        return buffer.getvalue()


image_preprocessor = ImagePreprocessor()
