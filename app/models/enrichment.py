"""
NameCard Backend - Company Enrichment Model
============================================

One row per (company, source). Tracks the latest attempt: status, confidence,
the raw provider payload, when it was fetched (freshness window) and how many
attempts have failed.

Status values: pending, enriched, failed
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Float, ForeignKey, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class CompanyEnrichment(Base):
    __tablename__ = "company_enrichments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(String(50), nullable=False, comment="Enrichment source name")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        server_default=text("'pending'"),
    )
    confidence: Mapped[Optional[float]] = mapped_column(Float, comment="Source confidence 0-100")
    raw_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB)
    enriched_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        comment="When enriched data was last fetched successfully",
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    company = relationship("Company", back_populates="enrichments")

    __table_args__ = (
        UniqueConstraint("company_id", "source", name="uq_company_enrichments_company_source"),
    )

    def is_fresh(self, freshness_days: int, now: Optional[datetime] = None) -> bool:
        """Enriched and fetched within the freshness window."""
        if self.status != "enriched" or self.enriched_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        enriched_at = self.enriched_at
        if enriched_at.tzinfo is None:
            enriched_at = enriched_at.replace(tzinfo=timezone.utc)
        return (now - enriched_at).total_seconds() < freshness_days * 86400

    def __repr__(self) -> str:
        return (
            f"<CompanyEnrichment(company_id={self.company_id}, source='{self.source}', "
            f"status='{self.status}')>"
        )
