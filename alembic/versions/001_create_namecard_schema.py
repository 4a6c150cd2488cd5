"""Create NameCard schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Tables: users, companies, company_enrichments, cards, ocr_jobs.
Uses PostgreSQL UUID, TIMESTAMPTZ, TEXT[] (GIN-indexed card tags) and JSONB.

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        _id(),
        sa.Column("cognito_id", sa.String(128), nullable=False, comment="Identity provider subject (sub)"),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column(
            "tenant_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
            comment="Tenant owning this user's cards",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cognito_id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_users_tenant_id", "users", ["tenant_id"])

    op.create_table(
        "companies",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("domain", sa.String(255), nullable=True, comment="Primary web domain without scheme or www."),
        sa.Column("industry", sa.String(200), nullable=True),
        sa.Column("size", sa.String(100), nullable=True, comment="Size band, e.g. 51-200"),
        sa.Column("headquarters", sa.String(300), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("logo_url", sa.String(500), nullable=True),
        sa.Column("founded", sa.Integer(), nullable=True),
        sa.Column("employee_count", sa.Integer(), nullable=True),
        sa.Column("linkedin_url", sa.String(500), nullable=True),
        sa.Column("twitter_handle", sa.String(100), nullable=True),
        sa.Column("technologies", postgresql.ARRAY(sa.String()), server_default=sa.text("'{}'"), nullable=False),
        sa.Column("keywords", postgresql.ARRAY(sa.String()), server_default=sa.text("'{}'"), nullable=False),
        sa.Column(
            "overall_enrichment_score",
            sa.Float(),
            nullable=True,
            comment="Confidence (0-100) of the latest successful enrichment",
        ),
        sa.Column("last_enrichment_date", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sa.UniqueConstraint("domain"),
    )
    op.create_index("idx_companies_name_lower", "companies", [sa.text("lower(name)")])

    op.create_table(
        "company_enrichments",
        _id(),
        sa.Column(
            "company_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("companies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source", sa.String(50), nullable=False, comment="Enrichment source name"),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True, comment="Source confidence 0-100"),
        sa.Column("raw_data", postgresql.JSONB(), nullable=True),
        sa.Column(
            "enriched_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When enriched data was last fetched successfully",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "source", name="uq_company_enrichments_company_source"),
    )

    op.create_table(
        "cards",
        _id(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "company_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("companies.id", ondelete="SET NULL"),
            nullable=True,
            comment="Enriched company profile, set by enrichment",
        ),
        sa.Column("original_image_url", sa.String(1000), nullable=True),
        sa.Column("processed_image_url", sa.String(1000), nullable=True, comment="OCR-optimized variant"),
        sa.Column("thumbnail_url", sa.String(1000), nullable=True),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True, comment="Mean OCR line confidence (0-1)"),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("company", sa.String(200), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", postgresql.ARRAY(sa.String(30)), server_default=sa.text("'{}'"), nullable=False),
        sa.Column("scan_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_enrichment_date", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_cards_user_created", "cards", ["user_id", sa.text("created_at DESC")])
    op.create_index("idx_cards_tenant", "cards", ["tenant_id"])
    op.create_index("idx_cards_company", "cards", ["company"])
    op.create_index("idx_cards_tags", "cards", ["tags"], postgresql_using="gin")

    op.create_table(
        "ocr_jobs",
        _id(),
        sa.Column(
            "card_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("cards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "requested_by",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment="User who triggered the scan",
        ),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "submitted_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_ocr_jobs_card_id", "ocr_jobs", ["card_id"])
    op.create_index("idx_ocr_jobs_status", "ocr_jobs", ["status"])


def downgrade() -> None:
    op.drop_index("idx_ocr_jobs_status", table_name="ocr_jobs")
    op.drop_index("idx_ocr_jobs_card_id", table_name="ocr_jobs")
    op.drop_table("ocr_jobs")
    op.drop_index("idx_cards_tags", table_name="cards")
    op.drop_index("idx_cards_company", table_name="cards")
    op.drop_index("idx_cards_tenant", table_name="cards")
    op.drop_index("idx_cards_user_created", table_name="cards")
    op.drop_table("cards")
    op.drop_table("company_enrichments")
    op.drop_index("idx_companies_name_lower", table_name="companies")
    op.drop_table("companies")
    op.drop_index("idx_users_tenant_id", table_name="users")
    op.drop_table("users")
