"""
Backend manager: routes model identifiers to backends and exposes the
uniform ``complete`` call used by every stage of a deliberation.
"""

import asyncio
from typing import Callable, Dict, Optional, List, Type

from loguru import logger

from ..errors import ErrorKind, GatewayError
from .base import LLMBackend, BackendType, GenerationResult
from .ollama_backend import OllamaBackend
from .openrouter_backend import OpenRouterBackend

UsageHook = Callable[[str, int, int], None]


class BackendManager:
    """
    Manages the configured backends and routes each model id to one of them.

    Routing order: an explicit pin (from configuration or from the
    backend's own model listing), then any backend reporting the model as
    available, then the primary backend.
    """

    BACKEND_CLASSES: Dict[BackendType, Type[LLMBackend]] = {
        BackendType.OLLAMA: OllamaBackend,
        BackendType.OPENROUTER: OpenRouterBackend,
    }

    def __init__(self, usage_hook: Optional[UsageHook] = None):
        self.backends: Dict[str, LLMBackend] = {}
        self.primary_backend: Optional[str] = None
        self.model_to_backend: Dict[str, str] = {}
        self.usage_hook = usage_hook

    def register_backend(
        self,
        name: str,
        backend: LLMBackend,
        models: Optional[List[str]] = None,
        is_primary: bool = False
    ) -> None:
        """Register an already constructed backend."""
        self.backends[name] = backend
        if is_primary or self.primary_backend is None:
            self.primary_backend = name
        for model in models or []:
            self.model_to_backend[model] = name

    async def add_backend(
        self,
        name: str,
        backend_type: BackendType,
        is_primary: bool = False,
        models: Optional[List[str]] = None,
        **config
    ) -> bool:
        """Construct, connect and register a backend."""

        backend_class = self.BACKEND_CLASSES.get(backend_type)
        if not backend_class:
            logger.error(f"Unknown backend type: {backend_type}")
            return False

        backend = backend_class(**config)
        if not await backend.connect():
            logger.warning(f"Failed to connect backend: {name}")
            return False

        pinned = list(models or [])
        for model in backend._available_models:
            if model not in self.model_to_backend and model not in pinned:
                pinned.append(model)

        self.register_backend(name, backend, pinned, is_primary)
        logger.info(f"Added backend: {name} ({backend_type.value})")
        return True

    def get_backend(self, name: str) -> Optional[LLMBackend]:
        """Get a specific backend."""
        return self.backends.get(name)

    def get_backend_for_model(self, model: str) -> Optional[LLMBackend]:
        """Get the backend that serves a specific model."""
        backend_name = self.model_to_backend.get(model)
        if backend_name:
            return self.backends.get(backend_name)

        for name, backend in self.backends.items():
            if backend.is_model_available(model):
                self.model_to_backend[model] = name
                return backend

        if self.primary_backend:
            return self.backends.get(self.primary_backend)

        return None

    async def complete(
        self,
        model: str,
        prompt: str,
        timeout: float,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> GenerationResult:
        """
        Run one completion under a deadline.

        Returns the successful result; raises ``GatewayError`` with kind
        TRANSPORT, QUOTA or TIMEOUT otherwise.
        """
        backend = self.get_backend_for_model(model)
        if not backend:
            raise GatewayError(ErrorKind.TRANSPORT, model, "No backend available for model")

        try:
            result = await asyncio.wait_for(
                backend.generate(
                    prompt,
                    model,
                    system_prompt=system_prompt,
                    temperature=temperature,
                    max_tokens=max_tokens
                ),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise GatewayError(ErrorKind.TIMEOUT, model, f"No answer within {timeout:.1f}s")
        except Exception as e:
            logger.opt(exception=e).warning(f"Backend raised while generating with {model}")
            raise GatewayError(ErrorKind.TRANSPORT, model, f"{type(e).__name__}: {e}") from e

        if not result.success:
            raise GatewayError(ErrorKind.from_backend(result.error_type), model, result.error or "")

        if not result.content.strip():
            raise GatewayError(ErrorKind.TRANSPORT, model, "Empty response content")

        if self.usage_hook:
            self.usage_hook(model, result.tokens_prompt, result.tokens_generated)

        return result

    async def health_check_all(self) -> Dict[str, bool]:
        """Check health of all backends."""
        results = {}
        for name, backend in self.backends.items():
            try:
                results[name] = await backend.health_check()
            except Exception as e:
                logger.warning(f"Health check for {name} raised: {e}")
                results[name] = False
        return results

    def list_all_models(self) -> Dict[str, List[str]]:
        """List pinned and discovered models per backend."""
        result: Dict[str, List[str]] = {name: [] for name in self.backends}
        for model, name in sorted(self.model_to_backend.items()):
            result.setdefault(name, []).append(model)
        return result

    async def disconnect_all(self) -> None:
        """Disconnect all backends."""
        for backend in self.backends.values():
            await backend.disconnect()
        self.backends.clear()
        self.model_to_backend.clear()
        self.primary_backend = None
