"""
Abstract base class for model gateway backends.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from enum import Enum
import time


class BackendType(Enum):
    """Supported backend types."""
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"


@dataclass
class BackendConfig:
    """Configuration for a model backend."""
    backend_type: BackendType
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 120.0
    max_retries: int = 3
    default_temperature: float = 0.7
    default_max_tokens: int = 2048
    extra_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class GenerationResult:
    """Result from a generation request.

    ``error_type`` is one of ``transport``, ``quota`` or ``timeout`` when
    ``success`` is false.
    """
    success: bool
    content: str
    model: str
    tokens_generated: int = 0
    tokens_prompt: int = 0
    response_time: float = 0.0
    finish_reason: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None

    def __post_init__(self):
        self.timestamp = time.time()

    @property
    def total_tokens(self) -> int:
        return self.tokens_generated + self.tokens_prompt

    @classmethod
    def failure(
        cls,
        model: str,
        error: str,
        error_type: str,
        response_time: float = 0.0
    ) -> "GenerationResult":
        return cls(
            success=False,
            content="",
            model=model,
            response_time=response_time,
            error=error,
            error_type=error_type
        )


def classify_status(status_code: int) -> str:
    """Map an HTTP status onto a backend error type."""
    if status_code == 429:
        return "quota"
    if status_code in (408, 504):
        return "timeout"
    return "transport"


class LLMBackend(ABC):
    """
    Abstract base class for model backends.

    Implementations own connection management, backend-specific retries
    and request/response formatting. ``generate`` must not raise for
    remote failures; it reports them through ``GenerationResult``.
    """

    def __init__(self, config: BackendConfig):
        self.config = config
        self._is_connected = False
        self._available_models: List[str] = []

    @property
    def backend_type(self) -> BackendType:
        return self.config.backend_type

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @abstractmethod
    async def connect(self) -> bool:
        """Establish connection to the backend."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the backend."""
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        model: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> GenerationResult:
        """Generate a response from the model."""
        pass

    @abstractmethod
    async def list_models(self) -> List[str]:
        """List available models."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backend is healthy and responsive."""
        pass

    def is_model_available(self, model: str) -> bool:
        """Check if a specific model is available."""
        return model in self._available_models

    def format_messages(
        self,
        prompt: str,
        system_prompt: Optional[str] = None
    ) -> List[Dict[str, str]]:
        """Format prompt into message format."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    def estimate_tokens(self, text: str) -> int:
        """Rough token estimation (model-specific implementations can override)."""
        return len(text) // 4

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.backend_type.value}, connected={self.is_connected})"
