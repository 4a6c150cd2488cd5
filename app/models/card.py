"""
NameCard Backend - Card Model
==============================

What:  A digitized business card owned by one user within a tenant.
Lifecycle:
    1. Created by a scan (OCR fields, image URLs) or manually
    2. Edited by the owner (partial updates, tags)
    3. Linked to a Company by enrichment (company_id, last_enrichment_date)

Query Patterns:
    - list by owner, newest first → idx_cards_user_created
    - filter by company name       → idx_cards_company
    - tag containment (@>)         → GIN idx_cards_tags
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Float, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Card(Base):
    __tablename__ = "cards"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        comment="Enriched company profile, set by enrichment",
    )

    # ── Images ────────────────────────────────────────────────────────────
    original_image_url: Mapped[Optional[str]] = mapped_column(String(1000))
    processed_image_url: Mapped[Optional[str]] = mapped_column(
        String(1000), comment="OCR-optimized variant"
    )
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1000))

    # ── OCR ───────────────────────────────────────────────────────────────
    extracted_text: Mapped[Optional[str]] = mapped_column(Text)
    confidence: Mapped[Optional[float]] = mapped_column(
        Float, comment="Mean OCR line confidence (0-1)"
    )

    # ── Contact Fields ────────────────────────────────────────────────────
    name: Mapped[Optional[str]] = mapped_column(String(200))
    title: Mapped[Optional[str]] = mapped_column(String(200))
    company: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(320))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    website: Mapped[Optional[str]] = mapped_column(String(500))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    tags: Mapped[List[str]] = mapped_column(
        ARRAY(String(30)), nullable=False, default=list, server_default=text("'{}'")
    )

    # ── Timestamps ────────────────────────────────────────────────────────
    scan_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    last_enrichment_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
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

    company_profile = relationship("Company", lazy="noload")

    __table_args__ = (
        Index("idx_cards_user_created", "user_id", created_at.desc()),
        Index("idx_cards_tenant", "tenant_id"),
        Index("idx_cards_company", "company"),
        Index("idx_cards_tags", "tags", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return f"<Card(id={self.id}, name='{self.name}', company='{self.company}')>"
