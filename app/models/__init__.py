"""
NameCard Backend - ORM Models
==============================

Importing this package registers every table on Base.metadata
(used by Alembic and by relationship resolution).
"""

from app.models.user import User
from app.models.company import Company
from app.models.enrichment import CompanyEnrichment
from app.models.card import Card
from app.models.ocr_job import OcrJob

__all__ = ["User", "Company", "CompanyEnrichment", "Card", "OcrJob"]
