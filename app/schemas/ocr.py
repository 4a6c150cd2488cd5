"""NameCard Backend - OCR job schemas."""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from app.schemas.common import ApiModel


class OcrJobResponse(ApiModel):
    id: uuid.UUID
    card_id: uuid.UUID
    status: str
    payload: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    submitted_at: datetime
    completed_at: Optional[datetime] = None
