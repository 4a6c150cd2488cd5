"""
NameCard Backend - Textract Text Detection Service
===================================================

What:  Client for AWS Textract (DetectDocumentText, AnalyzeDocument).
How:   boto3 calls run in the threadpool (boto3 is blocking). Transient
       provider errors are retried with exponential backoff and jitter
       (tenacity); a circuit breaker stops calling Textract after repeated
       failures. Everything else is translated to OCRProcessingError (422)
       with a message a user can act on.
Who:   ScanService (synchronous detection during a scan) and the OCR queue
       worker (document analysis after the scan response).

Resilience:
    _call_with_retry  → retries throttling / 5xx / connection errors only
    detect_text       → breaker check, success/failure bookkeeping, mapping
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError
from starlette.concurrency import run_in_threadpool
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import settings
from app.exceptions import CircuitBreakerOpenError, OCRProcessingError, ValidationError
from app.services.circuit_breaker import CircuitBreaker
from app.services.field_extractor import OcrLine, lines_from_blocks

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_CODES = {
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "InternalServerError",
    "ServiceUnavailableException",
    "LimitExceededException",
}

# Textract error code → message returned to the client
FRIENDLY_ERRORS = {
    "InvalidParameterException": "The image could not be processed. Please upload a clear photo of the card.",
    "InvalidImageFormatException": "Unsupported image format. Please upload a JPEG or PNG image.",
    "DocumentTooLargeException": "The image is too large for text detection. Please upload an image under 5MB.",
    "UnsupportedDocumentException": "The document type is not supported for text detection.",
    "BadDocumentException": "The image appears to be corrupted or unreadable.",
    "ThrottlingException": "Text detection is busy right now. Please try again in a moment.",
    "ProvisionedThroughputExceededException": "Text detection is busy right now. Please try again in a moment.",
    "AccessDeniedException": "Text detection is not available due to a configuration problem.",
}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, EndpointConnectionError):
        return True
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code") in RETRYABLE_ERROR_CODES
    return False


def _error_code(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "Unknown")
    return type(exc).__name__


@dataclass
class TextDetectionResult:
    blocks: List[Dict[str, Any]]
    lines: List[OcrLine]
    word_count: int
    processing_time_ms: float
    document_pages: int = 1

    @property
    def raw_text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    @property
    def average_confidence(self) -> float:
        if not self.lines:
            return 0.0
        return round(sum(line.confidence for line in self.lines) / len(self.lines), 4)


@dataclass
class DocumentAnalysisResult:
    lines: List[OcrLine]
    key_values: Dict[str, str] = field(default_factory=dict)
    table_count: int = 0
    processing_time_ms: float = 0.0

    @property
    def raw_text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    @property
    def average_confidence(self) -> float:
        if not self.lines:
            return 0.0
        return round(sum(line.confidence for line in self.lines) / len(self.lines), 4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rawText": self.raw_text,
            "confidence": self.average_confidence,
            "lineCount": len(self.lines),
            "keyValues": self.key_values,
            "tableCount": self.table_count,
            "processingTimeMs": self.processing_time_ms,
        }


def _key_values_from_blocks(blocks: List[Dict[str, Any]]) -> Dict[str, str]:
    """Resolve KEY_VALUE_SET blocks into {key text: value text}."""
    by_id = {block["Id"]: block for block in blocks if "Id" in block}

    def text_of(block: Dict[str, Any]) -> str:
        words = []
        for rel in block.get("Relationships", []):
            if rel.get("Type") != "CHILD":
                continue
            for child_id in rel.get("Ids", []):
                child = by_id.get(child_id, {})
                if child.get("BlockType") == "WORD":
                    words.append(child.get("Text", ""))
                elif child.get("BlockType") == "SELECTION_ELEMENT" and child.get("SelectionStatus") == "SELECTED":
                    words.append("X")
        return " ".join(words).strip()

    pairs: Dict[str, str] = {}
    for block in blocks:
        if block.get("BlockType") != "KEY_VALUE_SET" or "KEY" not in block.get("EntityTypes", []):
            continue
        key = text_of(block)
        value = ""
        for rel in block.get("Relationships", []):
            if rel.get("Type") == "VALUE":
                value = " ".join(text_of(by_id.get(vid, {})) for vid in rel.get("Ids", [])).strip()
        if key:
            pairs[key.rstrip(":")] = value
    return pairs


class TextractService:
    """
    Singleton Textract client holding the shared circuit breaker.

    The boto3 client is created lazily so importing the module never needs
    AWS credentials.
    """

    def __init__(self, client: Any = None):
        self._client = client
        self.circuit_breaker = CircuitBreaker(
            name="textract",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "textract",
                region_name=settings.textract_region_name,
                config=BotoConfig(retries={"max_attempts": 1, "mode": "standard"}),
            )
        return self._client

    def _check_image(self, image_bytes: bytes) -> None:
        if not image_bytes:
            raise ValidationError(message="Image is empty", field="image")
        if len(image_bytes) > settings.textract_max_bytes:
            raise ValidationError(
                message=(
                    f"Image is {len(image_bytes) / 1024 / 1024:.1f}MB; text detection accepts "
                    f"at most {settings.textract_max_bytes / 1024 / 1024:.0f}MB"
                ),
                field="image",
                context={"size": len(image_bytes)},
            )

    async def detect_text(self, image_bytes: bytes) -> TextDetectionResult:
        """
        Detect printed text lines in an image.

        Raises:
            ValidationError: empty or oversized image
            CircuitBreakerOpenError: Textract failing repeatedly
            OCRProcessingError: provider rejected the image or failed after retries
        """
        self._check_image(image_bytes)
        start = time.perf_counter()
        response = await self._guarded_call(
            "detect_document_text", Document={"Bytes": image_bytes}
        )
        blocks = response.get("Blocks", [])
        lines = lines_from_blocks(blocks)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "Textract detected %d lines (%d blocks) in %.0fms",
            len(lines),
            len(blocks),
            elapsed_ms,
        )
        return TextDetectionResult(
            blocks=blocks,
            lines=lines,
            word_count=sum(1 for b in blocks if b.get("BlockType") == "WORD"),
            processing_time_ms=elapsed_ms,
            document_pages=response.get("DocumentMetadata", {}).get("Pages", 1),
        )

    async def analyze_document(self, image_bytes: bytes) -> DocumentAnalysisResult:
        """Forms and tables analysis; same error semantics as detect_text."""
        self._check_image(image_bytes)
        start = time.perf_counter()
        response = await self._guarded_call(
            "analyze_document",
            Document={"Bytes": image_bytes},
            FeatureTypes=["FORMS", "TABLES"],
        )
        blocks = response.get("Blocks", [])
        return DocumentAnalysisResult(
            lines=lines_from_blocks(blocks),
            key_values=_key_values_from_blocks(blocks),
            table_count=sum(1 for b in blocks if b.get("BlockType") == "TABLE"),
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    async def _guarded_call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        self.circuit_breaker.can_execute()
        try:
            response = await self._call_with_retry(operation, **kwargs)
        except CircuitBreakerOpenError:
            raise
        except (ClientError, BotoCoreError) as e:
            code = _error_code(e)
            # Client-side rejections say nothing about provider health
            if _is_retryable(e) or code == "AccessDeniedException":
                self.circuit_breaker.record_failure()
            logger.error("Textract %s failed: %s (%s)", operation, code, str(e))
            raise OCRProcessingError(
                message=FRIENDLY_ERRORS.get(code, "Text detection failed. Please try again later."),
                context={"operation": operation, "error_code": code},
            )
        self.circuit_breaker.record_success()
        return response

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_with_retry(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        method = getattr(self.client, operation)
        return await run_in_threadpool(method, **kwargs)

    def health(self) -> str:
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"


textract_service = TextractService()
