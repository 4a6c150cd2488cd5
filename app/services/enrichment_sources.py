"""
NameCard Backend - Company Enrichment Sources
==============================================

What:  Interface for external company-research providers and the Perplexity
       implementation.
How:   A source turns (company name, domain, website) into a normalized
       enrichment dict plus a 0-100 confidence. Sources own their resilience:
       tenacity retry on transient failures, a circuit breaker, and a
       per-minute request budget. Every failure leaves as
       EnrichmentServiceError carrying an error type:

    NETWORK_ERROR         connection failure or timeout
    RATE_LIMIT_EXCEEDED   provider 429 or local per-minute budget spent
    AUTHENTICATION_ERROR  provider 401/403
    SERVICE_UNAVAILABLE   circuit breaker open
    NOT_CONFIGURED        source disabled or placeholder API key
    UNKNOWN_ERROR         anything else (bad status, malformed JSON)
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import settings
from app.exceptions import CircuitBreakerOpenError, EnrichmentServiceError
from app.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

_DUMMY_KEY_PATTERNS = (
    re.compile(r"^dummy", re.I),
    re.compile(r"^test", re.I),
    re.compile(r"^placeholder", re.I),
    re.compile(r"^example", re.I),
    re.compile(r"^fake", re.I),
    re.compile(r"^mock", re.I),
    re.compile(r"development", re.I),
    re.compile(r"staging", re.I),
)

SYSTEM_PROMPT = (
    "You are a professional business research assistant. Provide comprehensive, "
    "accurate company information with proper citations. Always include source URLs "
    "for verification."
)

_STRING = {"type": "string"}
_STRINGS = {"type": "array", "items": _STRING}

COMPANY_RESEARCH_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "company": {
            "type": "object",
            "properties": {
                "name": _STRING,
                "description": _STRING,
                "industry": _STRING,
                "website": _STRING,
                "headquarters": _STRING,
                "employeeCount": {"type": "number"},
                "founded": {"type": "number"},
                "annualRevenue": _STRING,
                "businessModel": _STRING,
                "marketPosition": _STRING,
                "keywords": _STRINGS,
            },
            "required": ["name"],
        },
        "recentNews": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": _STRING,
                    "summary": _STRING,
                    "url": _STRING,
                    "publishDate": _STRING,
                    "source": _STRING,
                },
                "required": ["title", "summary", "source"],
            },
        },
        "keyPeople": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"name": _STRING, "role": _STRING, "description": _STRING},
                "required": ["name", "role"],
            },
        },
        "competitors": _STRINGS,
        "recentDevelopments": _STRINGS,
        "technologies": _STRINGS,
        "socialMedia": {
            "type": "object",
            "properties": {
                "linkedinUrl": _STRING,
                "twitterHandle": _STRING,
                "facebookUrl": _STRING,
            },
        },
        "citations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "url": _STRING,
                    "title": _STRING,
                    "source": _STRING,
                    "relevance": {"type": "number"},
                },
                "required": ["url", "title", "source", "relevance"],
            },
        },
        "researchMetadata": {
            "type": "object",
            "properties": {
                "query": _STRING,
                "confidence": {"type": "number"},
                "researchDate": _STRING,
            },
            "required": ["query", "confidence", "researchDate"],
        },
    },
    "required": ["company", "citations", "researchMetadata"],
}

_SCALAR_DATA_POINTS = (
    "name",
    "description",
    "industry",
    "website",
    "headquarters",
    "employeeCount",
    "founded",
    "annualRevenue",
    "businessModel",
    "marketPosition",
    "linkedinUrl",
    "twitterHandle",
    "facebookUrl",
)
_LIST_DATA_POINTS = (
    "technologies",
    "competitors",
    "recentNews",
    "keyPeople",
    "recentDevelopments",
    "citations",
)


def is_dummy_api_key(key: Optional[str]) -> bool:
    """Placeholder-looking or too-short keys count as not configured."""
    if not key:
        return True
    return len(key) < 20 or any(p.search(key) for p in _DUMMY_KEY_PATTERNS)


def count_data_points(data: Dict[str, Any]) -> int:
    count = sum(1 for name in _SCALAR_DATA_POINTS if data.get(name))
    count += sum(len(data.get(name) or []) for name in _LIST_DATA_POINTS)
    return count


@dataclass
class SourceResult:
    data: Dict[str, Any]
    confidence: float
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def data_points(self) -> int:
        return count_data_points(self.data)


class EnrichmentSource(ABC):
    """
    Contract for a company-research provider.

    Implementations raise EnrichmentServiceError for every failure, so the
    caller can record the failure without knowing which provider ran.
    """

    name: str = "unknown"
    description: str = ""

    @abstractmethod
    def is_enabled(self) -> bool:
        ...

    @abstractmethod
    async def enrich_company(
        self,
        company_name: Optional[str],
        domain: Optional[str] = None,
        website: Optional[str] = None,
    ) -> SourceResult:
        ...

    @abstractmethod
    async def health_check(self) -> str:
        """'available', 'disabled' or 'circuit_open'; never calls the provider."""
        ...


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class PerplexitySource(EnrichmentSource):
    """
    Company research through Perplexity chat completions with a JSON schema
    response format.

    Args:
        api_key / base_url / model / timeout / enabled default to settings.
        transport: httpx transport override (tests use httpx.MockTransport)
    """

    name = "perplexity"
    description = "AI-powered company research with citations (Perplexity)"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
        requests_per_minute: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.perplexity_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.perplexity_base_url).rstrip("/")
        self.model = model or settings.perplexity_model
        self.timeout = timeout or settings.perplexity_timeout
        self.enabled = settings.perplexity_enabled if enabled is None else enabled
        self.requests_per_minute = requests_per_minute or settings.perplexity_requests_per_minute
        self._transport = transport
        self._recent_requests: Deque[float] = deque()
        self.circuit_breaker = CircuitBreaker(
            name="perplexity",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    def is_enabled(self) -> bool:
        return self.enabled and not is_dummy_api_key(self.api_key)

    async def health_check(self) -> str:
        if not self.is_enabled():
            return "disabled"
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"

    def build_query(
        self, company_name: Optional[str], domain: Optional[str] = None, website: Optional[str] = None
    ) -> str:
        query = f"Research comprehensive information about {company_name or 'Unknown Company'}"
        if domain:
            query += f" (domain: {domain})"
        elif website:
            query += f" (website: {website})"
        query += (
            ". Provide current and accurate information including: business description, "
            "industry classification, company size and employee count, headquarters location, "
            "founding year, business model, market position, recent news and developments, "
            "key leadership team members, main competitors, technology stack used, social media "
            "presence, and recent funding or financial information. Focus on factual, up-to-date "
            "information with reliable sources."
        )
        return query

    async def enrich_company(
        self,
        company_name: Optional[str],
        domain: Optional[str] = None,
        website: Optional[str] = None,
    ) -> SourceResult:
        """
        Raises:
            EnrichmentServiceError: disabled, over budget, breaker open, or the call failed
        """
        if not self.is_enabled():
            raise EnrichmentServiceError(
                message="Perplexity enrichment is not enabled or configured",
                source=self.name,
                error_type="NOT_CONFIGURED",
            )
        self._take_budget()

        try:
            self.circuit_breaker.can_execute()
        except CircuitBreakerOpenError as e:
            raise EnrichmentServiceError(
                message=e.message,
                source=self.name,
                error_type="SERVICE_UNAVAILABLE",
                retry_after=e.recovery_time,
            )

        query = self.build_query(company_name, domain, website)
        start = time.perf_counter()
        try:
            body = await self._call_with_retry(query)
            research = self._parse_content(body)
        except httpx.HTTPStatusError as e:
            if _is_retryable(e):
                self.circuit_breaker.record_failure()
            raise self._status_error(e)
        except httpx.TransportError as e:
            self.circuit_breaker.record_failure()
            logger.error("Perplexity request failed: %s", str(e))
            raise EnrichmentServiceError(
                message=f"Network error connecting to {self.name}: {type(e).__name__}",
                source=self.name,
                error_type="NETWORK_ERROR",
            )
        except ValueError as e:
            logger.error("Perplexity returned an unusable response: %s", str(e))
            raise EnrichmentServiceError(
                message=f"Failed to parse {self.name} response",
                source=self.name,
                error_type="UNKNOWN_ERROR",
            )
        self.circuit_breaker.record_success()

        data = self.transform(research, query)
        confidence = self.calculate_confidence(research)
        logger.info(
            "Perplexity enriched '%s' in %.0fms (confidence %d)",
            company_name or domain,
            (time.perf_counter() - start) * 1000,
            confidence,
        )
        return SourceResult(data=data, confidence=confidence, raw=research)

    def _take_budget(self) -> None:
        now = time.monotonic()
        while self._recent_requests and now - self._recent_requests[0] >= 60:
            self._recent_requests.popleft()
        if len(self._recent_requests) >= self.requests_per_minute:
            retry_after = max(1, int(60 - (now - self._recent_requests[0])))
            raise EnrichmentServiceError(
                message=f"Rate limit exceeded for {self.name}",
                source=self.name,
                error_type="RATE_LIMIT_EXCEEDED",
                retry_after=retry_after,
            )
        self._recent_requests.append(now)

    def _status_error(self, exc: httpx.HTTPStatusError) -> EnrichmentServiceError:
        status = exc.response.status_code
        logger.error("Perplexity API error: HTTP %d", status)
        if status == 429:
            retry_after = exc.response.headers.get("retry-after")
            return EnrichmentServiceError(
                message=f"Rate limit exceeded for {self.name}",
                source=self.name,
                error_type="RATE_LIMIT_EXCEEDED",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status in (401, 403):
            return EnrichmentServiceError(
                message=f"Authentication failed for {self.name}",
                source=self.name,
                error_type="AUTHENTICATION_ERROR",
            )
        return EnrichmentServiceError(
            message=f"{self.name} API error: HTTP {status}",
            source=self.name,
            error_type="UNKNOWN_ERROR",
        )

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_with_retry(self, query: str) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"schema": COMPANY_RESEARCH_SCHEMA},
            },
            "temperature": 0.1,
            "max_tokens": 2000,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            return response.json()

    def _parse_content(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Raises:
            ValueError: no message content, or content is not a JSON object
        """
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ValueError("Invalid response from Perplexity API")
        research = json.loads(content)
        if not isinstance(research, dict) or not isinstance(research.get("company"), dict):
            raise ValueError("Perplexity response is missing the company object")
        return research

    def transform(self, research: Dict[str, Any], query: str) -> Dict[str, Any]:
        """Flatten the structured research into camelCase enrichment data."""
        company = research.get("company") or {}
        social = research.get("socialMedia") or {}
        metadata = research.get("researchMetadata") or {}
        now = datetime.now(timezone.utc).isoformat()
        return {
            "name": company.get("name"),
            "description": company.get("description"),
            "industry": company.get("industry"),
            "website": company.get("website"),
            "headquarters": company.get("headquarters"),
            "employeeCount": company.get("employeeCount"),
            "founded": company.get("founded"),
            "annualRevenue": company.get("annualRevenue"),
            "businessModel": company.get("businessModel"),
            "marketPosition": company.get("marketPosition"),
            "keywords": list(company.get("keywords") or []),
            "technologies": list(research.get("technologies") or []),
            "competitors": list(research.get("competitors") or []),
            "recentNews": list(research.get("recentNews") or []),
            "keyPeople": list(research.get("keyPeople") or []),
            "recentDevelopments": list(research.get("recentDevelopments") or []),
            "linkedinUrl": social.get("linkedinUrl"),
            "twitterHandle": social.get("twitterHandle"),
            "facebookUrl": social.get("facebookUrl"),
            "citations": [
                {
                    "url": c.get("url"),
                    "title": c.get("title"),
                    "source": c.get("source"),
                    "relevance": c.get("relevance"),
                    "accessDate": now,
                }
                for c in research.get("citations") or []
                if isinstance(c, dict)
            ],
            "researchQuery": query,
            "researchDate": now,
            "confidence": metadata.get("confidence") or 85,
        }

    def calculate_confidence(self, research: Dict[str, Any]) -> int:
        """Reported confidence (default 85) plus data-richness boosts, clamped 0-100."""
        metadata = research.get("researchMetadata") or {}
        confidence = float(metadata.get("confidence") or 85)
        boosts: List[tuple] = [
            ("citations", 5, 5),
            ("recentNews", 3, 3),
            ("keyPeople", 2, 2),
            ("competitors", 3, 3),
            ("technologies", 3, 2),
        ]
        for key, minimum, boost in boosts:
            if len(research.get(key) or []) >= minimum:
                confidence += boost
        return int(min(100, max(0, round(confidence))))


perplexity_source = PerplexitySource()
