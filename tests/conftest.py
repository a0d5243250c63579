"""Shared pytest fixtures."""

import asyncio
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from deliberation.backends import BackendManager, GenerationResult, LLMBackend
from deliberation.backends.base import BackendConfig, BackendType
from deliberation.collector import ModelResponse
from deliberation.config import load_config
from deliberation.council import DeliberationCouncil
from deliberation.models import ModelManager
from deliberation.persistence import MemoryAuditSink
from deliberation.prompts import COLLECTION_SYSTEM_PROMPT, REVIEW_SYSTEM_PROMPT, SYNTHESIS_SYSTEM_PROMPT

MODELS = [
    "vendor-a/alpha",
    "vendor-b/bravo",
    "vendor-c/charlie",
    "vendor-d/delta",
    "vendor-e/echo",
]

ENTRY_PATTERN = re.compile(r"^### Response ([A-Z0-9]+)\n(.*?)(?=\n\n---\n\n)", re.MULTILINE | re.DOTALL)

Outcome = Union[str, GenerationResult]
Handler = Callable[[str, str, Optional[str]], Outcome]


@dataclass
class Call:
    model: str
    prompt: str
    system_prompt: Optional[str]

    @property
    def stage(self) -> str:
        return stage_of(self.system_prompt)


def stage_of(system_prompt: Optional[str]) -> str:
    if system_prompt == REVIEW_SYSTEM_PROMPT:
        return "review"
    if system_prompt == SYNTHESIS_SYSTEM_PROMPT:
        return "synthesis"
    if system_prompt == COLLECTION_SYSTEM_PROMPT:
        return "collection"
    return "other"


def review_entries(prompt: str) -> List[Tuple[str, str]]:
    """``(label, text)`` pairs in the order a judge saw them."""
    return [(label, text.strip()) for label, text in ENTRY_PATTERN.findall(prompt)]


def answer_text(model: str) -> str:
    """Collection answers sort in participant order, so judges agree on a winner."""
    return f"answer-{MODELS.index(model) if model in MODELS else 9}: {model} says 42."


def default_handler(model: str, prompt: str, system_prompt: Optional[str]) -> Outcome:
    stage = stage_of(system_prompt)
    if stage == "review":
        ranked = sorted(review_entries(prompt), key=lambda entry: entry[1])
        return "Evaluation done.\n\nFINAL RANKING: [" + ", ".join(label for label, _ in ranked) + "]"
    if stage == "synthesis":
        return f"Synthesis by {model}."
    return answer_text(model)


class FakeBackend(LLMBackend):
    """In-process backend; records every call and answers through ``handler``."""

    def __init__(self, models: List[str], handler: Optional[Handler] = None):
        super().__init__(BackendConfig(backend_type=BackendType.OPENROUTER, timeout=30.0))
        self._available_models = list(models)
        self.handler = handler or default_handler
        self.calls: List[Call] = []
        self.failures: Dict[Tuple[str, str], str] = {}
        self.delays: Dict[Tuple[str, str], float] = {}

    def fail(self, model: str, stage: str, error_type: str = "transport"):
        self.failures[(model, stage)] = error_type

    def delay(self, model: str, stage: str, seconds: float):
        self.delays[(model, stage)] = seconds

    def calls_for(self, stage: str) -> List[Call]:
        return [c for c in self.calls if c.stage == stage]

    async def connect(self) -> bool:
        self._is_connected = True
        return True

    async def disconnect(self) -> None:
        self._is_connected = False

    async def generate(
        self,
        prompt: str,
        model: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> GenerationResult:
        self.calls.append(Call(model, prompt, system_prompt))
        stage = stage_of(system_prompt)

        if (model, stage) in self.delays:
            await asyncio.sleep(self.delays[(model, stage)])
        if (model, stage) in self.failures:
            return GenerationResult.failure(model, f"{stage} failed", self.failures[(model, stage)])

        outcome = self.handler(model, prompt, system_prompt)
        if isinstance(outcome, GenerationResult):
            return outcome
        return GenerationResult(
            success=True,
            content=outcome,
            model=model,
            tokens_prompt=len(prompt) // 4,
            tokens_generated=len(outcome) // 4
        )

    async def list_models(self) -> List[str]:
        return list(self._available_models)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend(MODELS)


@pytest.fixture
def backend_manager(fake_backend) -> BackendManager:
    manager = BackendManager()
    manager.register_backend("fake", fake_backend, models=MODELS, is_primary=True)
    return manager


@pytest.fixture
def model_manager(backend_manager) -> ModelManager:
    return ModelManager(backend_manager)


@pytest.fixture
def config() -> dict:
    config = load_config()
    config["council"]["max_call_timeout"] = 5.0
    config["council"]["session_deadline"] = 10.0
    return config


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def council(config, model_manager, audit_sink) -> DeliberationCouncil:
    return DeliberationCouncil(config, model_manager, sink=audit_sink)


def make_response(model_id: str, text: str = "", succeeded: bool = True) -> ModelResponse:
    return ModelResponse(
        model_id=model_id,
        text=text or answer_text(model_id),
        latency_ms=10,
        succeeded=succeeded
    )
