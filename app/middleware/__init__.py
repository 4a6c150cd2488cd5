"""
NameCard Backend - Middleware Package
======================================

Request → [Request ID] → [Logging] → [Rate Limit] → [GZip] → [CORS] → Route

    - request_id.py: correlation ID in a ContextVar, echoed as X-Request-ID
    - logging.py:    access log with duration (includes rejected 429s)
    - rate_limit.py: per-IP sliding window (in-memory, single instance)
"""
