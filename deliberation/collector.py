"""
Stage 1: parallel collection of answers from every participant.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from .errors import ErrorKind, GatewayError
from .models import CouncilMember
from .prompts import COLLECTION_SYSTEM_PROMPT
from .utils import truncate


@dataclass
class ModelResponse:
    """One backend's answer to the original question."""
    model_id: str
    text: str
    latency_ms: int
    succeeded: bool
    error_kind: Optional[ErrorKind] = None
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "text": self.text,
            "latency_ms": self.latency_ms,
            "succeeded": self.succeeded,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
        }


@dataclass
class CollectionResult:
    responses: List[ModelResponse] = field(default_factory=list)

    @property
    def successful(self) -> List[ModelResponse]:
        return [r for r in self.responses if r.succeeded]

    @property
    def partial(self) -> bool:
        return any(not r.succeeded for r in self.responses)


class Collector:
    """
    Fans one question out to all participants concurrently.

    Every call gets its own deadline, ``min(member.timeout, max_call_timeout)``,
    so a slow backend configuration cannot stretch the session. A failing or
    slow participant yields ``ModelResponse(succeeded=False)``; collection
    as a whole never raises because of one backend.
    """

    def __init__(
        self,
        max_call_timeout: float = 60.0,
        temperature: Optional[float] = None,
        system_prompt: str = COLLECTION_SYSTEM_PROMPT
    ):
        self.max_call_timeout = max_call_timeout
        self.temperature = temperature
        self.system_prompt = system_prompt

    def effective_timeout(self, member: CouncilMember) -> float:
        return min(member.timeout, self.max_call_timeout)

    async def _collect_one(self, question: str, member: CouncilMember) -> ModelResponse:
        start = time.monotonic()
        try:
            text = await member.complete(
                question,
                timeout=self.effective_timeout(member),
                system_prompt=self.system_prompt,
                temperature=self.temperature
            )
        except GatewayError as e:
            latency = int((time.monotonic() - start) * 1000)
            logger.warning(f"Collection from {member.name} failed ({e.kind.value}): {truncate(e.message, 200)}")
            return ModelResponse(
                model_id=member.name,
                text="",
                latency_ms=latency,
                succeeded=False,
                error_kind=e.kind,
                error=e.message
            )

        return ModelResponse(
            model_id=member.name,
            text=text,
            latency_ms=int((time.monotonic() - start) * 1000),
            succeeded=True
        )

    async def collect(self, question: str, members: List[CouncilMember]) -> CollectionResult:
        """Query every member and wait until all have answered or timed out."""
        logger.info(f"Collection starting: {len(members)} participants")

        tasks = [asyncio.create_task(self._collect_one(question, m)) for m in members]
        try:
            responses = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        result = CollectionResult(responses=list(responses))
        logger.info(
            f"Collection complete: {len(result.successful)} succeeded, "
            f"{len(members) - len(result.successful)} failed"
        )
        return result
