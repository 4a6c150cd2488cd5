"""
NameCard Backend - Enrichment Source Unit Tests
================================================

What:  PerplexitySource request/response handling without network access.
How:   httpx.MockTransport stands in for the Perplexity API.

What we test:
    ✅ Successful research → flattened data + confidence boosts
    ✅ Request shape (endpoint, bearer key, JSON schema response format)
    ✅ Placeholder keys / disabled source → NOT_CONFIGURED, no request
    ✅ 401, 429 and malformed bodies → typed EnrichmentServiceError
    ✅ Per-minute budget and open circuit breaker short-circuit the call
"""

import json
import time

import httpx
import pytest

from app.exceptions import EnrichmentServiceError
from app.services.circuit_breaker import CircuitBreaker
from app.services.enrichment_sources import (
    PerplexitySource,
    _is_retryable,
    count_data_points,
    is_dummy_api_key,
)

API_KEY = "pplx-4f9c2a7b1e8d6c3a5b0f9e8d7c6b5a4f"

RESEARCH = {
    "company": {
        "name": "Acme Technologies",
        "description": "Industrial widgets and robotics.",
        "industry": "Manufacturing",
        "website": "https://acme.com",
        "headquarters": "Springfield, USA",
        "employeeCount": 350,
        "founded": 1998,
        "keywords": ["widgets", "robotics"],
    },
    "recentNews": [
        {"title": "Acme opens plant", "summary": "New plant", "source": "Wire"},
    ],
    "keyPeople": [
        {"name": "Wile E. Coyote", "role": "CEO"},
        {"name": "Road Runner", "role": "CTO"},
    ],
    "competitors": ["Globex", "Initech", "Umbrella"],
    "technologies": ["Python", "AWS"],
    "socialMedia": {"linkedinUrl": "https://linkedin.com/company/acme", "twitterHandle": "@acme"},
    "citations": [
        {"url": f"https://news.example.com/{i}", "title": f"Story {i}", "source": "News", "relevance": 0.9}
        for i in range(5)
    ],
    "researchMetadata": {"query": "acme", "confidence": 80, "researchDate": "2026-01-01"},
}


def completion(content):
    return {"choices": [{"message": {"content": content}}]}


def source_with(handler, **kwargs):
    return PerplexitySource(
        api_key=kwargs.pop("api_key", API_KEY),
        enabled=kwargs.pop("enabled", True),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestPerplexitySource:

    @pytest.mark.asyncio
    async def test_successful_enrichment(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion(json.dumps(RESEARCH)))

        source = source_with(handler)
        result = await source.enrich_company("Acme Technologies", domain="acme.com")

        assert seen["url"] == "https://api.perplexity.ai/chat/completions"
        assert seen["auth"] == f"Bearer {API_KEY}"
        assert seen["body"]["response_format"]["type"] == "json_schema"
        assert "(domain: acme.com)" in seen["body"]["messages"][1]["content"]

        assert result.data["industry"] == "Manufacturing"
        assert result.data["employeeCount"] == 350
        assert result.data["linkedinUrl"] == "https://linkedin.com/company/acme"
        assert len(result.data["citations"]) == 5
        # 80 reported + citations (5) + competitors (3) + keyPeople (2)
        assert result.confidence == 90
        assert result.data_points > 10

    @pytest.mark.asyncio
    async def test_placeholder_key_is_not_configured(self):
        def handler(request):
            raise AssertionError("no request expected")

        source = source_with(handler, api_key="test-key")
        assert not source.is_enabled()
        assert await source.health_check() == "disabled"
        with pytest.raises(EnrichmentServiceError) as exc_info:
            await source.enrich_company("Acme")
        assert exc_info.value.error_type == "NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_disabled_source(self):
        source = source_with(lambda request: httpx.Response(200), enabled=False)
        with pytest.raises(EnrichmentServiceError) as exc_info:
            await source.enrich_company("Acme")
        assert exc_info.value.error_type == "NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_authentication_error(self):
        source = source_with(lambda request: httpx.Response(401, json={"error": "bad key"}))
        with pytest.raises(EnrichmentServiceError) as exc_info:
            await source.enrich_company("Acme")
        assert exc_info.value.error_type == "AUTHENTICATION_ERROR"
        # Client errors do not count against the breaker
        assert source.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_provider_rate_limit(self):
        source = source_with(
            lambda request: httpx.Response(429, headers={"Retry-After": "30"}, json={})
        )
        with pytest.raises(EnrichmentServiceError) as exc_info:
            await source.enrich_company("Acme")
        assert exc_info.value.error_type == "RATE_LIMIT_EXCEEDED"
        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_malformed_content(self):
        source = source_with(lambda request: httpx.Response(200, json=completion("not json")))
        with pytest.raises(EnrichmentServiceError) as exc_info:
            await source.enrich_company("Acme")
        assert exc_info.value.error_type == "UNKNOWN_ERROR"

    @pytest.mark.asyncio
    async def test_missing_company_object(self):
        source = source_with(lambda request: httpx.Response(200, json=completion(json.dumps({"x": 1}))))
        with pytest.raises(EnrichmentServiceError, match="parse"):
            await source.enrich_company("Acme")

    @pytest.mark.asyncio
    async def test_local_budget(self):
        source = source_with(
            lambda request: httpx.Response(200, json=completion(json.dumps(RESEARCH))),
            requests_per_minute=1,
        )
        await source.enrich_company("Acme")
        with pytest.raises(EnrichmentServiceError) as exc_info:
            await source.enrich_company("Acme")
        assert exc_info.value.error_type == "RATE_LIMIT_EXCEEDED"
        assert 1 <= exc_info.value.retry_after <= 60

    @pytest.mark.asyncio
    async def test_open_breaker(self):
        def handler(request):
            raise AssertionError("no request expected")

        source = source_with(handler)
        source.circuit_breaker.state = CircuitBreaker.OPEN
        source.circuit_breaker.last_failure_time = time.time()

        assert await source.health_check() == "circuit_open"
        with pytest.raises(EnrichmentServiceError) as exc_info:
            await source.enrich_company("Acme")
        assert exc_info.value.error_type == "SERVICE_UNAVAILABLE"
        assert exc_info.value.retry_after


class TestHelpers:

    def test_dummy_keys(self):
        assert is_dummy_api_key(None)
        assert is_dummy_api_key("short")
        assert is_dummy_api_key("dummy-0123456789abcdefghij")
        assert is_dummy_api_key("pplx-development-0123456789abcdef")
        assert not is_dummy_api_key(API_KEY)

    def test_retryable(self):
        request = httpx.Request("POST", "https://api.perplexity.ai/chat/completions")
        assert _is_retryable(httpx.ConnectError("down", request=request))
        assert _is_retryable(
            httpx.HTTPStatusError("boom", request=request, response=httpx.Response(502, request=request))
        )
        assert not _is_retryable(
            httpx.HTTPStatusError("nope", request=request, response=httpx.Response(400, request=request))
        )
        assert not _is_retryable(ValueError("x"))

    def test_count_data_points(self):
        data = {"name": "Acme", "industry": "", "technologies": ["a", "b"], "citations": [{}]}
        assert count_data_points(data) == 4

    def test_confidence_defaults_and_clamps(self):
        source = PerplexitySource(api_key=API_KEY, enabled=True)
        assert source.calculate_confidence({"company": {"name": "x"}}) == 85
        rich = dict(RESEARCH, researchMetadata={"confidence": 99}, recentNews=[{}] * 3, technologies=["a"] * 3)
        assert source.calculate_confidence(rich) == 100

    def test_query_mentions_website_without_domain(self):
        source = PerplexitySource(api_key=API_KEY, enabled=True)
        query = source.build_query("Acme", website="https://acme.com")
        assert query.startswith("Research comprehensive information about Acme (website: https://acme.com)")
