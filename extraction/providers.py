"""
Search and synthesis provider interfaces with Tavily and OpenAI adapters.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel

from core import TokenUsage
from utils.exceptions import ConfigurationError, TransientProviderError
from utils.text import extract_json


logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class SearchSnippet:
    """Single search hit"""
    title: str
    url: str
    content: str = ""
    score: float = 0.0


@dataclass
class SynthesisResult(Generic[SchemaT]):
    """Validated structured output plus token accounting"""
    value: SchemaT
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""


class SearchProvider(ABC):
    """Web search returning snippets."""

    name: str = "search"

    @abstractmethod
    async def search(self, query: str, max_results: int = 5) -> List[SearchSnippet]:
        pass


class SynthesisProvider(ABC):
    """LLM call returning a schema-validated object.

    Network failures, rate limits and outputs that do not validate against ``schema``
    raise ``TransientProviderError``; callers decide how often to retry.
    """

    name: str = "llm"
    model: str = ""

    @abstractmethod
    async def synthesize(
        self,
        system: str,
        prompt: str,
        schema: Type[SchemaT],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> SynthesisResult[SchemaT]:
        pass


class TavilySearchProvider(SearchProvider):
    """Tavily search over httpx."""

    name = "tavily"
    API_URL = "https://api.tavily.com/search"

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ConfigurationError("SEARCH_API_KEY is required for the tavily provider")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            return await self._client.post(self.API_URL, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
            return await client.post(self.API_URL, json=payload, headers=headers)

    async def search(self, query: str, max_results: int = 5) -> List[SearchSnippet]:
        payload = {
            "query": query,
            "max_results": max(1, min(int(max_results), 20)),
            "search_depth": "basic",
            "include_answer": False,
        }
        response = await self._post(payload)
        if response.status_code in RETRYABLE_STATUS:
            raise TransientProviderError(f"Tavily returned HTTP {response.status_code}", provider=self.name)
        response.raise_for_status()

        results = []
        for item in list(response.json().get("results") or []):
            if not isinstance(item, dict):
                continue
            results.append(
                SearchSnippet(
                    title=str(item.get("title") or "").strip(),
                    url=str(item.get("url") or "").strip(),
                    content=str(item.get("content") or "").strip(),
                    score=float(item.get("score") or 0.0),
                )
            )
        return results


def _supports_temperature(model: str) -> bool:
    return not model.startswith(("gpt-5", "o1", "o3", "o4"))


class OpenAISynthesisProvider(SynthesisProvider):
    """
    OpenAI chat completions in JSON mode, validated with a pydantic schema.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-5-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 4000,
        timeout: float = 60.0,
    ):
        if not api_key:
            raise ConfigurationError("LLM_API_KEY is required for the openai provider")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._async_client = None

    def _get_async_client(self):
        if self._async_client is None:
            from openai import AsyncOpenAI
            self._async_client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._async_client

    @staticmethod
    def _usage(response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage()
        details = getattr(usage, "prompt_tokens_details", None)
        cached = getattr(details, "cached_tokens", 0) if details is not None else 0
        return TokenUsage(
            prompt=int(getattr(usage, "prompt_tokens", 0) or 0),
            completion=int(getattr(usage, "completion_tokens", 0) or 0),
            cached=int(cached or 0),
        )

    async def synthesize(
        self,
        system: str,
        prompt: str,
        schema: Type[SchemaT],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> SynthesisResult[SchemaT]:
        import openai

        client = self._get_async_client()
        model_name = model or self.model
        request_params = {
            "model": model_name,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "max_completion_tokens": self.max_tokens,
        }
        if _supports_temperature(model_name):
            request_params["temperature"] = self.temperature if temperature is None else temperature

        try:
            response = await client.chat.completions.create(**request_params)
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as exc:
            raise TransientProviderError(f"OpenAI request failed: {exc}", provider=self.name) from exc

        content = response.choices[0].message.content or ""
        usage = self._usage(response)
        try:
            value = schema.model_validate(extract_json(content))
        except ValueError as exc:
            raise TransientProviderError(
                f"Malformed {schema.__name__} response: {exc}",
                provider=self.name,
                preview=content[:200],
            ) from exc

        return SynthesisResult(value=value, usage=usage, model=getattr(response, "model", None) or model_name)


def build_search_provider(settings) -> SearchProvider:
    provider = str(settings.provider or "").strip().lower()
    if provider == "tavily":
        return TavilySearchProvider(api_key=settings.api_key, timeout=settings.timeout)
    raise ConfigurationError(f"Unknown search provider: {settings.provider}")


def build_synthesis_provider(settings) -> SynthesisProvider:
    provider = str(settings.provider or "").strip().lower()
    if provider == "openai":
        return OpenAISynthesisProvider(
            api_key=settings.api_key,
            model=settings.model_name,
            base_url=settings.base_url,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
        )
    raise ConfigurationError(f"Unknown LLM provider: {settings.provider}")
