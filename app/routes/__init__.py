"""
NameCard Backend - API Routes Package
======================================

Route Inventory:
    - auth.py:        /api/v1/auth/*          (register, login, tokens, password reset)
    - cards.py:       /api/v1/cards/*         (CRUD, search, stats, tags)
    - upload.py:      /api/v1/upload/*        (image upload, local file serving)
    - scan.py:        /api/v1/scan            (scan pipeline, OCR job status)
    - enrichment.py:  /api/v1/enrichment/*    (company enrichment)
    - health.py:      GET /health

Routes stay thin: extract request data, call a service, set headers.
"""
