"""
Ollama backend implementation.
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


class OllamaBackend(LLMBackend):
    """
    Backend implementation for a local Ollama server.

    Uses the non-streaming ``/api/chat`` endpoint. Connection errors are
    retried with exponential backoff before being reported as a
    ``transport`` failure.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        num_ctx: int = 4096,
        **kwargs
    ):
        config = BackendConfig(
            backend_type=BackendType.OLLAMA,
            base_url=base_url,
            timeout=timeout,
            **kwargs
        )
        super().__init__(config)

        self.base_url = base_url.rstrip("/")
        self.num_ctx = num_ctx
        self._client: Optional[httpx.AsyncClient] = None

    def _make_client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout or self.config.timeout)
        )

    async def connect(self) -> bool:
        """Connect to Ollama server."""
        try:
            if not self._client:
                self._client = self._make_client()

            response = await self._client.get("/api/tags")
            if response.status_code == 200:
                self._is_connected = True
                self._available_models = [
                    m["name"] for m in response.json().get("models", [])
                ]
                logger.info(f"Connected to Ollama at {self.base_url}")
                logger.debug(f"Available models: {self._available_models}")
                return True

            logger.error(f"Failed to connect to Ollama: {response.status_code}")
            return False

        except httpx.HTTPError as e:
            logger.error(f"Failed to connect to Ollama: {e}")
            return False

    async def disconnect(self) -> None:
        """Disconnect from Ollama server."""
        if self._client:
            await self._client.aclose()
            self._client = None
        self._is_connected = False
        logger.info("Disconnected from Ollama")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True
    )
    async def _post_chat(self, request_data: Dict[str, Any]) -> httpx.Response:
        return await self._client.post("/api/chat", json=request_data)

    async def generate(
        self,
        prompt: str,
        model: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> GenerationResult:
        """Generate a response from Ollama."""

        if not self._client:
            self._client = self._make_client()

        start_time = time.time()

        options = {
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "num_predict": max_tokens or self.config.default_max_tokens,
            "num_ctx": self.num_ctx,
        }

        request_data = {
            "model": model,
            "messages": self.format_messages(prompt, system_prompt),
            "stream": False,
            "options": options,
        }

        try:
            response = await self._post_chat(request_data)
        except httpx.TimeoutException as e:
            return GenerationResult.failure(
                model, f"Timeout: {e}", "timeout", time.time() - start_time
            )
        except httpx.HTTPError as e:
            logger.warning(f"Ollama transport error for {model}: {e}")
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
            content = (data.get("message") or {}).get("content") or ""
        except (ValueError, AttributeError) as e:
            logger.warning(f"Ollama returned an unreadable body for {model}: {e}")
            return GenerationResult.failure(
                model, f"Malformed response body: {response.text[:200]}", "transport", elapsed_time
            )

        return GenerationResult(
            success=True,
            content=content,
            model=model,
            tokens_generated=data.get("eval_count", 0),
            tokens_prompt=data.get("prompt_eval_count", 0),
            response_time=elapsed_time,
            finish_reason=data.get("done_reason", "stop")
        )

    async def list_models(self) -> List[str]:
        """List available models in Ollama."""
        if not self._client:
            self._client = self._make_client()

        try:
            response = await self._client.get("/api/tags")
            if response.status_code == 200:
                models = response.json().get("models", [])
                self._available_models = [m["name"] for m in models]
                return self._available_models
        except httpx.HTTPError as e:
            logger.error(f"Failed to list models: {e}")

        return []

    async def health_check(self) -> bool:
        """Check if Ollama is healthy."""
        try:
            if not self._client:
                self._client = self._make_client(10.0)

            response = await self._client.get("/api/tags")
            return response.status_code == 200

        except httpx.HTTPError as e:
            logger.warning(f"Health check failed: {e}")
            return False
