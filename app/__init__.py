"""
NameCard Backend - Application Package
======================================

Business-card digitization and company enrichment API.

Layers:

    ┌─────────────────────────────────────┐
    │   Routes (API Layer, /api/v1/...)   │  ← HTTP concerns, envelopes
    ├─────────────────────────────────────┤
    │   Services (Business Logic)         │  ← scan pipeline, cards, enrichment
    ├─────────────────────────────────────┤
    │   Models & Schemas (Data)           │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database (Persistence)            │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

External collaborators (Cognito, Textract, S3, Perplexity) are reached only
from the services layer.
"""

__version__ = "1.0.0"
