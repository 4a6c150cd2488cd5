"""
NameCard Backend - Services Layer
==================================

Business logic between the routes (HTTP) and the database. Routes stay thin;
services take sessions and domain values and return models or schemas.

Service Inventory:
    - AuthService / CognitoService: accounts and bearer-token resolution
    - CardService: card CRUD, search, tags and statistics
    - ScanService: validate → preprocess → store → OCR → extract → persist
    - TextractService: AWS Textract calls behind a circuit breaker
    - field_extractor: OCR lines → structured contact fields
    - OcrJobService / OcrQueue: document analysis after the scan response
    - ImageUploadService: upload pipeline (ImageValidator, ImagePreprocessor,
      StorageService)
    - EnrichmentService: cached company enrichment over PerplexitySource
    - company_service: company lookup and deduplication
"""
