"""
OpenRouter backend: one OpenAI-compatible endpoint in front of many vendors.
"""

import time
from typing import Optional, List, Dict, Any

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)
from loguru import logger

from .base import (
    LLMBackend,
    BackendConfig,
    BackendType,
    GenerationResult,
    classify_status
)


class ServerError(Exception):
    """A 5xx answer, worth retrying."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


class OpenRouterBackend(LLMBackend):
    """
    Backend implementation for OpenRouter (or any OpenAI-compatible server).

    Model identifiers are vendor-qualified, e.g. ``openai/gpt-4o``.
    Connection errors and 5xx answers are retried twice with exponential
    backoff; 429 is reported immediately as ``quota``.
    """

    def __init__(
        self,
        base_url: str = "https://openrouter.ai/api/v1",
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        app_name: str = "Deliberation Engine",
        referer: Optional[str] = None,
        **kwargs
    ):
        headers = {"X-Title": app_name}
        if referer:
            headers["HTTP-Referer"] = referer

        config = BackendConfig(
            backend_type=BackendType.OPENROUTER,
            base_url=base_url,
            api_key=api_key,
            timeout=timeout,
            extra_headers=headers,
            **kwargs
        )
        super().__init__(config)

        self.base_url = base_url.rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key) and self.config.api_key != "NEEDS_VALUE"

    def _make_client(self) -> httpx.AsyncClient:
        headers = dict(self.config.extra_headers)
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.config.timeout),
            headers=headers
        )

    async def connect(self) -> bool:
        """Open the HTTP client and fetch the model catalogue."""
        if not self.is_configured:
            logger.error("OpenRouter API key not configured")
            return False

        if not self._client:
            self._client = self._make_client()

        models = await self.list_models()
        self._is_connected = True
        logger.info(f"Connected to OpenRouter at {self.base_url} ({len(models)} models)")
        return True

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        self._is_connected = False

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((httpx.ConnectError, ServerError)),
        reraise=True
    )
    async def _post_completion(self, request_data: Dict[str, Any]) -> httpx.Response:
        response = await self._client.post("/chat/completions", json=request_data)
        if response.status_code >= 500:
            raise ServerError(response)
        return response

    async def generate(
        self,
        prompt: str,
        model: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> GenerationResult:
        """Generate a chat completion."""

        if not self._client:
            self._client = self._make_client()

        start_time = time.time()

        request_data = {
            "model": model,
            "messages": self.format_messages(prompt, system_prompt),
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "max_tokens": max_tokens or self.config.default_max_tokens,
            "stream": False,
        }

        try:
            response = await self._post_completion(request_data)
        except httpx.TimeoutException as e:
            return GenerationResult.failure(
                model, f"Timeout: {e}", "timeout", time.time() - start_time
            )
        except ServerError as e:
            return GenerationResult.failure(
                model,
                f"HTTP {e.response.status_code}: {e.response.text}",
                classify_status(e.response.status_code),
                time.time() - start_time
            )
        except httpx.HTTPError as e:
            logger.warning(f"OpenRouter transport error for {model}: {e}")
            return GenerationResult.failure(
                model, str(e), "transport", time.time() - start_time
            )

        elapsed_time = time.time() - start_time

        if response.status_code != 200:
            return GenerationResult.failure(
                model,
                f"HTTP {response.status_code}: {response.text}",
                classify_status(response.status_code),
                elapsed_time
            )

        try:
            data = response.json()
            choice = (data.get("choices") or [{}])[0]
            content = (choice.get("message") or {}).get("content") or ""
            usage = data.get("usage") or {}
        except (ValueError, AttributeError, IndexError, KeyError, TypeError) as e:
            logger.warning(f"OpenRouter returned an unreadable body for {model}: {e}")
            return GenerationResult.failure(
                model, f"Malformed response body: {response.text[:200]}", "transport", elapsed_time
            )

        return GenerationResult(
            success=True,
            content=content,
            model=model,
            tokens_generated=usage.get("completion_tokens", self.estimate_tokens(content)),
            tokens_prompt=usage.get("prompt_tokens", self.estimate_tokens(prompt)),
            response_time=elapsed_time,
            finish_reason=choice.get("finish_reason") or "stop"
        )

    async def list_models(self) -> List[str]:
        """List models exposed by the endpoint."""
        if not self._client:
            self._client = self._make_client()

        try:
            response = await self._client.get("/models")
            if response.status_code == 200:
                models = response.json().get("data", [])
                self._available_models = [m["id"] for m in models]
                return self._available_models
        except httpx.HTTPError as e:
            logger.error(f"Failed to list models: {e}")

        return []

    async def health_check(self) -> bool:
        """Check that the endpoint answers the model listing."""
        if not self.is_configured:
            return False
        try:
            if not self._client:
                self._client = self._make_client()
            response = await self._client.get("/models")
            return response.status_code == 200
        except httpx.HTTPError:
            return False
