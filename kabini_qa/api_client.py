"""
HTTP client for the kabini API.

Covers the calls the Enhance Content page makes:
- content extraction and site crawling
- question and answer generation
- citation likelihood and accuracy scoring

All calls are JSON over HTTP with a bearer token, made on a shared
httpx.AsyncClient so callers on the event loop can fan out.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import ApiConfig

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Remote API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class CrawlResult:
    """Response from /crawl-website."""

    success: bool
    content: str = ""
    total_pages: int = 0
    pages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class QuestionsResult:
    """Response from /llm/generate-questions."""

    questions: list[str]
    input_tokens: int = 0
    output_tokens: int = 0
    provider: str | None = None
    model: str | None = None


@dataclass
class GeneratedAnswer:
    answer: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class AnswersResult:
    """Response from /llm/generate-answers."""

    answers: list[GeneratedAnswer]
    provider: str | None = None
    model: str | None = None


# Returns a fresh access token, or None if the session cannot be refreshed
TokenRefresher = Callable[[], "str | None"]


class KabiniAPIClient:
    """kabini REST API client."""

    def __init__(
        self,
        config: ApiConfig | None = None,
        client: httpx.AsyncClient | None = None,
        token_refresher: TokenRefresher | None = None,
    ):
        self.config = config or ApiConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.access_token = self.config.access_token
        self.token_refresher = token_refresher
        self._client = client

    # =========================================================================
    # Transport
    # =========================================================================

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _send(self, method: str, endpoint: str, payload: dict[str, Any] | None) -> httpx.Response:
        url = f"{self.base_url}{endpoint}"
        try:
            return await self._get_client().request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise APIError(f"Request to {endpoint} failed: {e}") from e

    async def request(self, method: str, endpoint: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Make a JSON request.

        A 403 triggers one token refresh and retry when a refresher is set.

        Raises:
            APIError: On transport failure, non-2xx status or non-JSON body
        """
        logger.debug(f"{method} {endpoint}")
        response = await self._send(method, endpoint, payload)

        if response.status_code == 403 and self.token_refresher is not None:
            logger.info("403 Forbidden, attempting token refresh")
            token = self.token_refresher()
            if not token:
                raise APIError("Session expired. Please log in again.", status_code=403)
            self.access_token = token
            response = await self._send(method, endpoint, payload)

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            error = body.get("error") if isinstance(body, dict) else None
            raise APIError(
                error or f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            logger.error(f"Non-JSON response from {endpoint}: {response.text[:200]}")
            raise APIError(f"Expected JSON response but got: {content_type or 'nothing'}")

        try:
            return response.json()
        except ValueError as e:
            raise APIError(f"Failed to parse JSON from {endpoint}") from e

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", endpoint, payload)

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def health_check(self) -> dict[str, Any]:
        return await self.request("GET", "/health")

    async def extract_content(self, url: str) -> str:
        """Extract the readable text of one page."""
        data = await self._post("/extract-content", {"url": url})
        return data.get("content") or ""

    async def crawl_website(
        self,
        url: str,
        max_pages: int = 50,
        max_depth: int = 3,
        timeout_ms: int = 30000,
    ) -> CrawlResult:
        data = await self._post(
            "/crawl-website",
            {
                "url": url,
                "options": {"maxPages": max_pages, "maxDepth": max_depth, "timeout": timeout_ms},
            },
        )
        result = data.get("result") or {}
        return CrawlResult(
            success=bool(data.get("success")),
            content=result.get("content") or "",
            total_pages=result.get("totalPages") or 0,
            pages=result.get("pages") or [],
        )

    async def generate_questions(
        self,
        content: str,
        question_count: int,
        provider: str,
        model: str,
    ) -> QuestionsResult:
        data = await self._post(
            "/llm/generate-questions",
            {
                "content": content,
                "questionCount": question_count,
                "provider": provider,
                "model": model,
            },
        )
        return QuestionsResult(
            questions=[q for q in data.get("questions") or [] if isinstance(q, str)],
            input_tokens=data.get("inputTokens") or 0,
            output_tokens=data.get("outputTokens") or 0,
            provider=data.get("provider"),
            model=data.get("model"),
        )

    async def generate_answers(
        self,
        content: str,
        questions: list[str],
        provider: str,
        model: str,
    ) -> AnswersResult:
        data = await self._post(
            "/llm/generate-answers",
            {"content": content, "questions": questions, "provider": provider, "model": model},
        )
        answers = [
            GeneratedAnswer(
                answer=a.get("answer") or "",
                input_tokens=a.get("inputTokens") or 0,
                output_tokens=a.get("outputTokens") or 0,
            )
            for a in data.get("answers") or []
            if isinstance(a, dict)
        ]
        return AnswersResult(answers=answers, provider=data.get("provider"), model=data.get("model"))

    async def calculate_citation_likelihood(
        self, answer: str, content: str, provider: str, model: str
    ) -> float | None:
        data = await self._post(
            "/citation-likelihood/calculate",
            {"answer": answer, "content": content, "provider": provider, "model": model},
        )
        return data.get("citationLikelihood")

    async def calculate_accuracy(self, answer: str, content: str, provider: str, model: str) -> Any:
        """Accuracy score as returned by the API (number or numeric string)."""
        data = await self._post(
            "/accuracy/calculate",
            {"answer": answer, "content": content, "provider": provider, "model": model},
        )
        return data.get("accuracy")


__all__ = [
    "APIError",
    "CrawlResult",
    "QuestionsResult",
    "GeneratedAnswer",
    "AnswersResult",
    "KabiniAPIClient",
]
