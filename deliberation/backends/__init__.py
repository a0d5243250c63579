"""
Backend implementations for the model gateway.
"""

from .base import LLMBackend, BackendConfig, BackendType, GenerationResult
from .ollama_backend import OllamaBackend
from .openrouter_backend import OpenRouterBackend
from .manager import BackendManager

__all__ = [
    "LLMBackend",
    "BackendConfig",
    "BackendType",
    "GenerationResult",
    "OllamaBackend",
    "OpenRouterBackend",
    "BackendManager",
]
