"""
Council members: one participant model bound to the gateway.
"""
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from loguru import logger

from .backends import BackendManager
from .errors import GatewayError, InvalidDeliberationRequest

MIN_PARTICIPANTS = 3


@dataclass
class ModelStats:
    """Call statistics for one model."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_tokens: int = 0
    response_times: List[float] = field(default_factory=list)
    failures_by_kind: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.successful_calls / self.total_calls

    @property
    def avg_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)

    def record_success(self, response_time: float, tokens: int):
        self.total_calls += 1
        self.successful_calls += 1
        self.total_tokens += tokens
        self._record_time(response_time)

    def record_failure(self, response_time: float, kind: str):
        self.total_calls += 1
        self.failed_calls += 1
        self.failures_by_kind[kind] = self.failures_by_kind.get(kind, 0) + 1
        self._record_time(response_time)

    def _record_time(self, response_time: float):
        self.response_times.append(response_time)
        if len(self.response_times) > 100:
            self.response_times = self.response_times[-100:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "success_rate": round(self.success_rate, 3),
            "total_tokens": self.total_tokens,
            "avg_response_time": round(self.avg_response_time, 3),
            "failures_by_kind": dict(self.failures_by_kind),
        }


@dataclass
class CouncilMember:
    """
    A participant model behind the uniform ``complete(prompt, timeout)``
    capability. The member never decides how its backend is reached; the
    gateway does.
    """
    name: str
    timeout: float = 120.0
    temperature: float = 0.7
    max_tokens: int = 2048
    _gateway: Optional[BackendManager] = field(default=None, repr=False)
    _stats: ModelStats = field(default_factory=ModelStats, repr=False)

    async def complete(
        self,
        prompt: str,
        timeout: Optional[float] = None,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """Return the completion text or raise ``GatewayError``."""
        if not self._gateway:
            raise RuntimeError(f"Council member {self.name} has no gateway")

        start = time.monotonic()
        try:
            result = await self._gateway.complete(
                self.name,
                prompt,
                timeout=timeout or self.timeout,
                system_prompt=system_prompt,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens
            )
        except GatewayError as e:
            self._stats.record_failure(time.monotonic() - start, e.kind.value)
            raise

        self._stats.record_success(time.monotonic() - start, result.total_tokens)
        return result.content

    def get_stats(self) -> Dict[str, Any]:
        """Get model statistics."""
        return {"name": self.name, **self._stats.to_dict()}


class ModelManager:
    """
    Resolves participant identifiers into council members.

    Members are created lazily and cached so statistics accumulate across
    sessions; a member holds no per-session state.
    """

    def __init__(
        self,
        backend_manager: Optional[BackendManager] = None,
        default_temperature: float = 0.7,
        default_max_tokens: int = 2048
    ):
        self.backend_manager = backend_manager or BackendManager()
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self.members: Dict[str, CouncilMember] = {}

    def get_member(self, name: str) -> CouncilMember:
        """Get or create the member for a model identifier."""
        member = self.members.get(name)
        if member is None:
            backend = self.backend_manager.get_backend_for_model(name)
            if backend is None:
                raise InvalidDeliberationRequest(f"No backend can serve model: {name}")
            member = CouncilMember(
                name=name,
                timeout=backend.config.timeout,
                temperature=self.default_temperature,
                max_tokens=self.default_max_tokens,
                _gateway=self.backend_manager
            )
            self.members[name] = member
            logger.debug(f"Added council member: {name}")
        return member

    def resolve_participants(self, participants: List[str]) -> List[CouncilMember]:
        """Validate a participant list and return members in the same order."""
        if len(participants) != len(set(participants)):
            dupes = sorted(p for p, n in Counter(participants).items() if n > 1)
            raise InvalidDeliberationRequest(f"Duplicate participants: {', '.join(dupes)}")
        if len(participants) < MIN_PARTICIPANTS:
            raise InvalidDeliberationRequest(
                f"At least {MIN_PARTICIPANTS} participants are required, got {len(participants)}"
            )
        return [self.get_member(name) for name in participants]

    def get_all_stats(self) -> Dict[str, Any]:
        """Get statistics for all members."""
        return {
            "members": [m.get_stats() for m in self.members.values()],
            "total_members": len(self.members),
            "backends": list(self.backend_manager.backends.keys())
        }

    async def shutdown(self):
        """Shutdown the manager."""
        await self.backend_manager.disconnect_all()
