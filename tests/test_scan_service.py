"""
NameCard Backend - Scan Pipeline Unit Tests
============================================

What:  ScanService orchestration, OCR job lifecycle and the OCR queue.
How:   Real validation and Pillow preprocessing; Textract, storage, company
       lookup and the queue are mocked at the scan_service module.

What we test:
    ✅ Successful scan creates a card, links the company, queues the job
    ✅ Storage failure is tolerated (card without image URLs + warning)
    ✅ Invalid image / tags → ValidationError before any provider call
    ✅ No text above threshold → OCRProcessingError, nothing persisted
    ✅ OCR jobs: completed / failed transitions, tenant isolation
    ✅ OCR queue: not running, full, worker processing
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.exceptions import NotFoundError, OCRProcessingError, StorageError, ValidationError
from app.models.ocr_job import OcrJob
from app.services.field_extractor import OcrLine
from app.services.multipart import MultipartFile
from app.services.ocr_job_service import OcrJobService
from app.services.ocr_queue import OcrMessage, OcrQueue
from app.services.scan_service import DEFAULT_CARD_NAME, ScanService
from app.services.storage_service import StoredObject
from app.services.textract_service import DocumentAnalysisResult, TextDetectionResult


def detection(*rows):
    lines = [OcrLine(text=text, confidence=conf, index=i) for i, (text, conf) in enumerate(rows)]
    return TextDetectionResult(blocks=[], lines=lines, word_count=len(lines), processing_time_ms=5.0)


CARD_ROWS = (
    ("John Smith", 0.99),
    ("Senior Software Engineer", 0.98),
    ("Acme Technologies Inc", 0.97),
    ("john.smith@acme.com", 0.99),
    ("+1 (555) 123-4567", 0.96),
)


def stored_variants(variants, filename, user_id=None, purpose="business-card"):
    return {
        name: StoredObject(
            key=f"images/users/{user_id}/{purpose}/{name}/1_abc_card.jpg",
            url=f"/api/v1/upload/files/{name}.jpg",
            size=image.size,
            content_type=image.content_type,
        )
        for name, image in variants.items()
    }


@pytest.fixture
def scan_mocks():
    with patch("app.services.scan_service.textract_service") as textract, \
         patch("app.services.scan_service.storage_service") as storage, \
         patch("app.services.scan_service.ocr_queue") as queue, \
         patch("app.services.scan_service.find_or_create_company", new_callable=AsyncMock) as find_company:
        textract.detect_text = AsyncMock(return_value=detection(*CARD_ROWS))
        storage.upload_variants = AsyncMock(side_effect=stored_variants)
        queue.enqueue = MagicMock(return_value=True)
        find_company.return_value = SimpleNamespace(id=uuid4())
        yield SimpleNamespace(textract=textract, storage=storage, queue=queue, find_company=find_company)


def upload(content, filename="card.jpg"):
    return MultipartFile(field_name="image", filename=filename, content_type="image/jpeg", content=content)


class TestScanCard:

    def setup_method(self):
        self.service = ScanService()

    @pytest.mark.asyncio
    async def test_scan_success(self, mock_db_session, user, make_image, scan_mocks):
        result = await self.service.scan_card(
            mock_db_session, user, upload(make_image()), min_confidence=80, tags=["vip"]
        )

        card = result.card
        assert card.name == "John Smith"
        assert card.title == "Senior Software Engineer"
        assert card.company == "Acme Technologies Inc"
        assert card.email == "john.smith@acme.com"
        assert card.tags == ["scan", "vip"]
        assert card.user_id == user.id and card.tenant_id == user.tenant_id
        assert card.company_id is not None
        assert card.original_image_url == "/api/v1/upload/files/original.jpg"
        assert card.processed_image_url == "/api/v1/upload/files/ocr.jpg"
        assert result.image_urls["web"] == "/api/v1/upload/files/web.jpg"

        # Card and job are committed separately
        assert mock_db_session.commit.await_count == 2
        job = mock_db_session.add.call_args_list[-1].args[0]
        assert isinstance(job, OcrJob)
        assert job.payload["minConfidence"] == 0.8
        assert job.payload["textractLineCount"] == 5
        scan_mocks.queue.enqueue.assert_called_once()
        assert result.ocr_job_status == "pending"

    @pytest.mark.asyncio
    async def test_storage_failure_is_tolerated(self, mock_db_session, user, make_image, scan_mocks):
        scan_mocks.storage.upload_variants = AsyncMock(side_effect=StorageError("bucket down"))

        result = await self.service.scan_card(mock_db_session, user, upload(make_image()))

        assert result.card.original_image_url is None
        assert result.image_urls == {"original": None, "processed": None, "thumbnail": None, "web": None}
        assert any("could not be stored" in w for w in result.warnings)
        assert mock_db_session.commit.await_count == 2

    @pytest.mark.asyncio
    async def test_default_name_when_none_found(self, mock_db_session, user, make_image, scan_mocks):
        scan_mocks.textract.detect_text = AsyncMock(
            return_value=detection(("jane@example.com", 0.95), ("+1 555 987 6543", 0.95))
        )

        result = await self.service.scan_card(mock_db_session, user, upload(make_image()))

        assert result.card.name == DEFAULT_CARD_NAME
        assert result.card.company is None
        scan_mocks.find_company.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_image_rejected_before_ocr(self, mock_db_session, user, scan_mocks):
        with pytest.raises(ValidationError):
            await self.service.scan_card(mock_db_session, user, upload(b"not an image"))
        scan_mocks.textract.detect_text.assert_not_awaited()
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_too_many_tags(self, mock_db_session, user, make_image, scan_mocks):
        tags = [f"tag{i}" for i in range(10)]
        with pytest.raises(ValidationError, match="at most 10 tags"):
            await self.service.scan_card(mock_db_session, user, upload(make_image()), tags=tags)

    @pytest.mark.asyncio
    async def test_no_text_above_threshold(self, mock_db_session, user, make_image, scan_mocks):
        scan_mocks.textract.detect_text = AsyncMock(return_value=detection(("faint", 0.2)))

        with pytest.raises(OCRProcessingError):
            await self.service.scan_card(mock_db_session, user, upload(make_image()))

        mock_db_session.add.assert_not_called()
        scan_mocks.storage.upload_variants.assert_not_awaited()


def make_job(user, **overrides):
    values = dict(
        id=uuid4(),
        card_id=uuid4(),
        tenant_id=user.tenant_id,
        requested_by=user.id,
        status="pending",
        payload={"source": "scan"},
        result=None,
        error_message=None,
        retry_count=0,
        submitted_at=datetime.now(timezone.utc),
        completed_at=None,
    )
    values.update(overrides)
    return OcrJob(**values)


class TestOcrJobService:

    def setup_method(self):
        self.service = OcrJobService()

    @pytest.mark.asyncio
    async def test_create_job_is_pending(self, mock_db_session, user, make_card):
        card = make_card()
        job = await self.service.create_job(mock_db_session, card, user, payload={"source": "scan"})
        assert job.status == "pending"
        assert job.card_id == card.id
        assert job.tenant_id == card.tenant_id
        mock_db_session.flush.assert_awaited()

    @pytest.mark.asyncio
    async def test_run_job_completes(self, mock_db_session, user):
        job = make_job(user)
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = job
        analysis = DocumentAnalysisResult(
            lines=[OcrLine("John Smith", 0.99, 0)], key_values={"Tel": "555"}, processing_time_ms=3.0
        )

        with patch("app.services.ocr_job_service.textract_service") as textract:
            textract.analyze_document = AsyncMock(return_value=analysis)
            result = await self.service.run_job(mock_db_session, job.id, b"img")

        assert result.status == "completed"
        assert result.result["rawText"] == "John Smith"
        assert result.result["keyValues"] == {"Tel": "555"}
        assert result.completed_at is not None

    @pytest.mark.asyncio
    async def test_run_job_failure_is_recorded(self, mock_db_session, user):
        job = make_job(user)
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = job

        with patch("app.services.ocr_job_service.textract_service") as textract:
            textract.analyze_document = AsyncMock(side_effect=OCRProcessingError("bad image"))
            result = await self.service.run_job(mock_db_session, job.id, b"img")

        assert result.status == "failed"
        assert result.error_message == "bad image"
        assert result.retry_count == 1

    @pytest.mark.asyncio
    async def test_run_missing_job(self, mock_db_session):
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = None
        assert await self.service.run_job(mock_db_session, uuid4(), b"img") is None

    @pytest.mark.asyncio
    async def test_get_job_other_tenant(self, mock_db_session, user):
        job = make_job(user, tenant_id=uuid4())
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = job
        with pytest.raises(NotFoundError):
            await self.service.get_job(mock_db_session, user, job.id)

    @pytest.mark.asyncio
    async def test_get_job(self, mock_db_session, user):
        job = make_job(user)
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = job
        response = await self.service.get_job(mock_db_session, user, job.id)
        assert response.id == job.id
        assert response.status == "pending"


class TestOcrQueue:

    def test_enqueue_when_stopped(self):
        assert OcrQueue(max_size=2, workers=1).enqueue(uuid4(), b"img") is False

    @pytest.mark.asyncio
    async def test_full_queue_rejects(self):
        queue = OcrQueue(max_size=1, workers=1)
        with patch.object(OcrQueue, "_worker", new=AsyncMock()):
            queue.start()
            # Worker is a no-op, so nothing drains the queue
            assert queue.enqueue(uuid4(), b"a") is True
            assert queue.enqueue(uuid4(), b"b") is False
            assert queue.depth == 1
            await queue.stop()
        assert not queue.running

    @pytest.mark.asyncio
    async def test_worker_runs_jobs(self, mock_db_session):
        @asynccontextmanager
        async def fake_scope():
            yield mock_db_session

        run_job = AsyncMock(side_effect=[RuntimeError("boom"), None])
        queue = OcrQueue(max_size=5, workers=1)
        with patch("app.services.ocr_queue.session_scope", fake_scope), \
             patch("app.services.ocr_queue.ocr_job_service") as jobs:
            jobs.run_job = run_job
            queue.start()
            first, second = uuid4(), uuid4()
            queue.enqueue(first, b"a")
            queue.enqueue(second, b"b")
            await asyncio.wait_for(queue._queue.join(), timeout=2)
            await queue.stop()

        # The first failure does not stop the worker
        assert run_job.await_count == 2
        assert run_job.await_args_list[1].args[1] == second

    @pytest.mark.asyncio
    async def test_worker_drains_the_queue_it_was_started_with(self, mock_db_session):
        @asynccontextmanager
        async def fake_scope():
            yield mock_db_session

        pending: asyncio.Queue = asyncio.Queue()
        job_id = uuid4()
        pending.put_nowait(OcrMessage(job_id=job_id, image_bytes=b"a"))
        # Never started: the worker must not depend on the queue's own state
        queue = OcrQueue(max_size=1, workers=1)
        with patch("app.services.ocr_queue.session_scope", fake_scope), \
             patch("app.services.ocr_queue.ocr_job_service") as jobs:
            jobs.run_job = AsyncMock()
            task = asyncio.create_task(queue._worker(0, pending))
            await asyncio.wait_for(pending.join(), timeout=2)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        jobs.run_job.assert_awaited_once()
        assert jobs.run_job.await_args.args[1] == job_id
