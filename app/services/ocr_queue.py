"""
NameCard Backend - OCR Completion Queue
========================================

What:  In-process hand-off from the scan request to OCR job processing.
How:   Bounded asyncio.Queue drained by worker tasks started in the
       application lifespan. Each worker opens its own session scope per
       message, so a job's outcome is committed independently of the scan
       request that queued it.

A full queue is not an error: the job stays `pending` and a warning is logged.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from app.config import settings
from app.database import session_scope
from app.services.ocr_job_service import ocr_job_service

logger = logging.getLogger(__name__)


@dataclass
class OcrMessage:
    job_id: uuid.UUID
    image_bytes: bytes


class OcrQueue:

    def __init__(self, max_size: Optional[int] = None, workers: Optional[int] = None):
        self.max_size = max_size or settings.ocr_queue_max_size
        self.worker_count = workers or settings.ocr_queue_workers
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def depth(self) -> int:
        return self._queue.qsize() if self._queue else 0

    def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.max_size)
        self._workers = [
            asyncio.create_task(self._worker(i, self._queue), name=f"ocr-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info("OCR queue started with %d worker(s)", self.worker_count)

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        pending = self.depth
        self._workers = []
        self._queue = None
        logger.info("OCR queue stopped (%d message(s) left pending)", pending)

    def enqueue(self, job_id: uuid.UUID, image_bytes: bytes) -> bool:
        """Returns False when the message was not accepted (queue stopped or full)."""
        if self._queue is None:
            logger.warning("OCR queue not running; job %s stays pending", job_id)
            return False
        try:
            self._queue.put_nowait(OcrMessage(job_id=job_id, image_bytes=image_bytes))
        except asyncio.QueueFull:
            logger.warning("OCR queue full (%d); job %s stays pending", self.max_size, job_id)
            return False
        return True

    async def _worker(self, number: int, queue: asyncio.Queue) -> None:
        while True:
            message = await queue.get()
            try:
                async with session_scope() as db:
                    await ocr_job_service.run_job(db, message.job_id, message.image_bytes)
            except asyncio.CancelledError:
                raise
            except Exception:
                # A broken message must not take the worker down
                logger.error(
                    "OCR worker %d failed on job %s", number, message.job_id, exc_info=True
                )
            finally:
                queue.task_done()


ocr_queue = OcrQueue()
